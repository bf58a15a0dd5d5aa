from fastapi.testclient import TestClient

from quizweb.main import app

from helpers import add_question, classroom, make_quiz, make_user, take_quiz

client = TestClient(app)


def _connect(a_headers, b, b_headers):
    r = client.post("/api/connections", json={"connected_student_id": b["id"]}, headers=a_headers)
    assert r.status_code == 201, r.text
    conn = r.json()["connection"]
    accepted = client.put(f"/api/connections/{conn['id']}", json={"status": "accepted"}, headers=b_headers)
    assert accepted.status_code == 200, accepted.text
    return conn


def _types(headers):
    return [n["type"] for n in client.get("/api/notifications", headers=headers).json()["notifications"]]


def test_connection_request_flow():
    a, a_headers = make_user(client, "student", "Alice")
    b, b_headers = make_user(client, "student", "Bob")

    r = client.post("/api/connections", json={"connected_student_id": b["id"]}, headers=a_headers)
    assert r.status_code == 201
    conn = r.json()["connection"]
    assert conn["status"] == "pending"
    assert "connection_request" in _types(b_headers)

    pending = client.get("/api/connections/requests", headers=b_headers).json()
    assert [p["other_student_name"] for p in pending] == ["Alice"]
    assert client.get("/api/connections", headers=b_headers).json() == []

    assert client.put(f"/api/connections/{conn['id']}", json={"status": "maybe"}, headers=b_headers).status_code == 400
    assert client.put(f"/api/connections/{conn['id']}", json={"status": "accepted"}, headers=a_headers).status_code == 403
    assert client.put(f"/api/connections/{conn['id']}", json={"status": "accepted"}, headers=b_headers).status_code == 200
    assert client.put(f"/api/connections/{conn['id']}", json={"status": "rejected"}, headers=b_headers).status_code == 409
    assert "connection_accepted" in _types(a_headers)

    sent = client.get("/api/connections", headers=a_headers).json()
    received = client.get("/api/connections", headers=b_headers).json()
    assert sent[0]["other_student_id"] == b["id"]
    assert received[0]["other_student_id"] == a["id"]
    assert client.get("/api/connections/requests", headers=b_headers).json() == []


def test_connection_request_validation():
    a, a_headers = make_user(client, "student")
    b, b_headers = make_user(client, "student")
    teacher, _ = make_user(client, "teacher")

    assert client.post("/api/connections", json={"connected_student_id": a["id"]}, headers=a_headers).status_code == 400
    assert client.post("/api/connections", json={"connected_student_id": teacher["id"]}, headers=a_headers).status_code == 404
    assert client.post("/api/connections", json={"connected_student_id": "nobody"}, headers=a_headers).status_code == 404
    assert client.post("/api/connections", json={"connected_student_id": b["id"]}, headers=a_headers).status_code == 201
    reverse = client.post("/api/connections", json={"connected_student_id": a["id"]}, headers=b_headers)
    assert reverse.status_code == 409
    assert "pending" in reverse.json()["detail"]


def test_teachers_cannot_use_connections():
    _, t_headers = make_user(client, "teacher")
    assert client.get("/api/connections", headers=t_headers).status_code == 403


def test_challenge_requires_connection_and_published_quiz():
    (_, t_headers), cls, [(a, a_headers), (b, b_headers)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"])
    draft = make_quiz(client, t_headers, cls["id"], published=False)

    body = {"opponent_id": b["id"], "quiz_id": quiz["id"]}
    assert client.post("/api/connections/challenge", json=body, headers=a_headers).status_code == 403
    _connect(a_headers, b, b_headers)

    assert client.post("/api/connections/challenge", json={**body, "opponent_id": a["id"]}, headers=a_headers).status_code == 400
    assert client.post("/api/connections/challenge", json={**body, "quiz_id": draft["id"]}, headers=a_headers).status_code == 404
    assert client.post("/api/connections/challenge", json=body, headers=a_headers).status_code == 201
    assert client.post("/api/connections/challenge", json=body, headers=a_headers).status_code == 409
    assert "challenge_received" in _types(b_headers)


def test_challenge_response_rules():
    (_, t_headers), cls, [(a, a_headers), (b, b_headers)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"])
    _connect(a_headers, b, b_headers)
    challenge = client.post("/api/connections/challenge", json={"opponent_id": b["id"], "quiz_id": quiz["id"]},
                            headers=a_headers).json()["challenge"]
    url = f"/api/connections/challenge/{challenge['id']}"

    assert client.put(url, json={"status": "accepted"}, headers=a_headers).status_code == 403
    assert client.put(url, json={"status": "completed"}, headers=b_headers).status_code == 400
    assert client.put(url, json={"status": "rejected"}, headers=b_headers).status_code == 200
    assert client.put(url, json={"status": "accepted"}, headers=b_headers).status_code == 409
    assert "challenge_declined" in _types(a_headers)


def test_challenge_resolved_when_both_finish():
    (_, t_headers), cls, [(a, a_headers), (b, b_headers)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"], title="Duel")
    q1 = add_question(client, t_headers, quiz["id"], "A")
    q2 = add_question(client, t_headers, quiz["id"], "B")
    _connect(a_headers, b, b_headers)
    challenge = client.post("/api/connections/challenge", json={"opponent_id": b["id"], "quiz_id": quiz["id"]},
                            headers=a_headers).json()["challenge"]
    client.put(f"/api/connections/challenge/{challenge['id']}", json={"status": "accepted"}, headers=b_headers)
    assert "challenge_accepted" in _types(a_headers)

    take_quiz(client, a_headers, quiz["id"], [(q1["id"], "A"), (q2["id"], "wrong")])
    listed = client.get("/api/connections/challenges", headers=a_headers).json()
    assert listed[0]["status"] == "accepted"

    take_quiz(client, b_headers, quiz["id"], [(q1["id"], "A"), (q2["id"], "B")])
    listed = client.get("/api/connections/challenges", headers=a_headers).json()
    assert listed[0]["status"] == "completed"
    assert listed[0]["winner_id"] == b["id"]
    assert listed[0]["quiz_title"] == "Duel"

    a_notes = client.get("/api/notifications", headers=a_headers).json()["notifications"]
    b_notes = client.get("/api/notifications", headers=b_headers).json()["notifications"]
    assert a_notes[0]["type"] == "challenge_completed" and "lost" in a_notes[0]["message"]
    assert b_notes[0]["type"] == "challenge_completed" and "won" in b_notes[0]["message"]


def test_tied_challenge_has_no_winner():
    (_, t_headers), cls, [(a, a_headers), (b, b_headers)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"])
    q = add_question(client, t_headers, quiz["id"], "A")
    _connect(a_headers, b, b_headers)
    challenge = client.post("/api/connections/challenge", json={"opponent_id": b["id"], "quiz_id": quiz["id"]},
                            headers=a_headers).json()["challenge"]
    client.put(f"/api/connections/challenge/{challenge['id']}", json={"status": "accepted"}, headers=b_headers)

    take_quiz(client, a_headers, quiz["id"], [(q["id"], "A")])
    take_quiz(client, b_headers, quiz["id"], [(q["id"], "A")])
    row = client.get("/api/connections/challenges", headers=b_headers).json()[0]
    assert row["status"] == "completed"
    assert row["winner_id"] is None
