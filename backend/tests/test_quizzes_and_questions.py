from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlmodel import Session

from quizweb import models
from quizweb.database import engine
from quizweb.main import app
from quizweb.services import quiz_status

from helpers import add_question, classroom, make_class, make_quiz, make_user, take_quiz

client = TestClient(app)


def _quiz(**kwargs):
    return models.Quiz(title="q", teacher_id="t", **kwargs)


def test_quiz_status_rules():
    now = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)
    hour = timedelta(hours=1)
    assert quiz_status(_quiz(is_published=False), now) == "Draft"
    assert quiz_status(_quiz(is_published=True), now) == "Active"
    assert quiz_status(_quiz(is_published=True, start_time=now + hour, end_time=now + 2 * hour), now) == "Upcoming"
    assert quiz_status(_quiz(is_published=True, start_time=now - hour, end_time=now + hour), now) == "Active"
    assert quiz_status(_quiz(is_published=True, start_time=now - 2 * hour, end_time=now - hour), now) == "Closed"
    assert quiz_status(_quiz(is_published=True, start_time=now + hour), now) == "Upcoming"
    assert quiz_status(_quiz(is_published=True, start_time=now - hour), now) == "Active"
    assert quiz_status(_quiz(is_published=True, end_time=now - hour), now) == "Active"
    # values set without tzinfo are read as UTC
    assert quiz_status(_quiz(is_published=True, start_time=datetime(2025, 5, 1, 13, 0)), now) == "Upcoming"


def test_teacher_and_student_quiz_lists():
    (_, t_headers), cls, [(_, s_headers)] = classroom(client, students=1)
    published = make_quiz(client, t_headers, cls["id"], title="Live")
    make_quiz(client, t_headers, cls["id"], published=False, title="Draft")
    make_quiz(client, t_headers, None, title="Unassigned")

    teacher_view = client.get("/api/quizzes", headers=t_headers).json()
    assert len(teacher_view) == 3
    statuses = {q["title"]: q["status"] for q in teacher_view}
    assert statuses["Draft"] == "Draft"

    student_view = client.get("/api/quizzes", headers=s_headers).json()
    assert [q["id"] for q in student_view] == [published["id"]]
    assert student_view[0]["can_take"] is True
    assert student_view[0]["class_name"] == cls["name"]


def test_student_quiz_access_rules():
    (_, t_headers), cls, [(_, s_headers)] = classroom(client, students=1)
    draft = make_quiz(client, t_headers, cls["id"], published=False)
    loose = make_quiz(client, t_headers, None)
    _, outsider = make_user(client, "student")
    live = make_quiz(client, t_headers, cls["id"])

    assert client.get(f"/api/quizzes/{draft['id']}", headers=s_headers).status_code == 403
    assert client.get(f"/api/quizzes/{loose['id']}", headers=s_headers).status_code == 403
    assert client.get(f"/api/quizzes/{live['id']}", headers=outsider).status_code == 403
    assert client.get(f"/api/quizzes/{live['id']}", headers=s_headers).status_code == 200
    assert client.get("/api/quizzes/missing", headers=s_headers).status_code == 404

    _, other_teacher = make_user(client, "teacher")
    assert client.get(f"/api/quizzes/{live['id']}", headers=other_teacher).status_code == 403


def test_questions_hidden_before_start():
    (_, t_headers), cls, [(_, s_headers)] = classroom(client, students=1)
    later = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    quiz = make_quiz(client, t_headers, cls["id"], start_time=later)
    add_question(client, t_headers, quiz["id"], "A", options=["A", "B"])
    assert client.get(f"/api/quizzes/{quiz['id']}/questions", headers=s_headers).status_code == 403
    assert client.get(f"/api/quizzes/{quiz['id']}/questions", headers=t_headers).status_code == 200


def test_correct_answer_revealed_after_completion():
    (_, t_headers), cls, [(_, s_headers)] = classroom(client, students=1)
    quiz = make_quiz(client, t_headers, cls["id"])
    q = add_question(client, t_headers, quiz["id"], "B", options=["A", "B"])

    before = client.get(f"/api/questions/quiz/{quiz['id']}", headers=s_headers).json()
    assert "correct_answer" not in before[0]
    assert before[0]["options"] == ["A", "B"]

    take_quiz(client, s_headers, quiz["id"], [(q["id"], "B")])
    after = client.get(f"/api/quizzes/{quiz['id']}/questions", headers=s_headers).json()
    assert after[0]["correct_answer"] == "B"


def test_quiz_create_validation_and_ownership():
    _, t_headers = make_user(client, "teacher")
    _, other_headers = make_user(client, "teacher")
    foreign = make_class(client, other_headers)

    assert client.post("/api/quizzes", json={"title": " "}, headers=t_headers).status_code == 400
    assert client.post("/api/quizzes", json={"title": "T", "type": "essay"}, headers=t_headers).status_code == 400
    assert client.post("/api/quizzes", json={"title": "T", "class_id": foreign["id"]}, headers=t_headers).status_code == 403
    assert client.post("/api/quizzes", json={"title": "T", "time_limit": -1}, headers=t_headers).status_code == 422

    quiz = make_quiz(client, t_headers)
    assert client.put(f"/api/quizzes/{quiz['id']}", json={}, headers=t_headers).status_code == 400
    assert client.put(f"/api/quizzes/{quiz['id']}", json={"title": "X"}, headers=other_headers).status_code == 403
    assert client.put(f"/api/quizzes/{quiz['id']}", json={"class_id": foreign["id"]}, headers=t_headers).status_code == 403
    r = client.put(f"/api/quizzes/{quiz['id']}", json={"title": "Renamed", "time_limit": 15}, headers=t_headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed"
    assert r.json()["time_limit"] == 15


def test_publishing_notifies_enrolled_students_once():
    (_, t_headers), cls, [(_, s1), (_, s2)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"], published=False, title="Surprise")
    assert client.get("/api/notifications", headers=s1).json()["total_count"] == 0

    client.put(f"/api/quizzes/{quiz['id']}", json={"is_published": True}, headers=t_headers)
    client.put(f"/api/quizzes/{quiz['id']}", json={"description": "edited"}, headers=t_headers)
    for headers in (s1, s2):
        notes = client.get("/api/notifications", headers=headers).json()
        assert notes["total_count"] == 1
        assert notes["notifications"][0]["type"] == "quiz_assigned"
        assert "Surprise" in notes["notifications"][0]["message"]

    make_quiz(client, t_headers, cls["id"], title="Published at once")
    assert client.get("/api/notifications", headers=s1).json()["total_count"] == 2


def test_question_crud_recomputes_total_points():
    _, t_headers = make_user(client, "teacher")
    quiz = make_quiz(client, t_headers)
    q1 = add_question(client, t_headers, quiz["id"], "A", points=2)
    q2 = add_question(client, t_headers, quiz["id"], "True", qtype="true-false", points=3)
    assert (q1["order_index"], q2["order_index"]) == (0, 1)
    assert client.get(f"/api/quizzes/{quiz['id']}", headers=t_headers).json()["total_points"] == 5

    r = client.put(f"/api/questions/{q1['id']}", json={"points": 4}, headers=t_headers)
    assert r.status_code == 200
    assert client.get(f"/api/quizzes/{quiz['id']}", headers=t_headers).json()["total_points"] == 7

    assert client.delete(f"/api/questions/{q2['id']}", headers=t_headers).status_code == 200
    assert client.get(f"/api/quizzes/{quiz['id']}", headers=t_headers).json()["total_points"] == 4


def test_question_create_validation():
    _, t_headers = make_user(client, "teacher")
    _, other_headers = make_user(client, "teacher")
    quiz = make_quiz(client, t_headers)
    base = {"quiz_id": quiz["id"], "question_text": "Q", "question_type": "short-answer", "correct_answer": "x"}

    created = client.post("/api/questions", json=base, headers=t_headers)
    assert created.status_code == 201
    assert created.json()["points"] == 1
    assert client.post("/api/questions", json={**base, "correct_answer": ""}, headers=t_headers).status_code == 400
    assert client.post("/api/questions", json={**base, "question_type": "essay"}, headers=t_headers).status_code == 400
    assert client.post("/api/questions", json=base, headers=other_headers).status_code == 404
    assert client.put(f"/api/questions/{created.json()['id']}", json={}, headers=t_headers).status_code == 400
    assert client.delete(f"/api/questions/{created.json()['id']}", headers=other_headers).status_code == 403


def test_deleting_quiz_cascades():
    (_, t_headers), cls, [(_, s_headers)] = classroom(client, students=1)
    quiz = make_quiz(client, t_headers, cls["id"])
    q = add_question(client, t_headers, quiz["id"], "A")
    take_quiz(client, s_headers, quiz["id"], [(q["id"], "A")])

    assert client.delete(f"/api/quizzes/{quiz['id']}", headers=t_headers).status_code == 200
    assert client.get("/api/attempts", headers=s_headers).json() == []
    assert client.get("/api/answers", headers=s_headers).json() == []


def test_timestamps_round_trip_as_aware_utc():
    (_, t_headers), cls, [(student, _)] = classroom(client, students=1)
    quiz = make_quiz(client, t_headers, cls["id"], start_time="2030-01-01T10:00:00+02:00")
    assert quiz["start_time"].startswith("2030-01-01T08:00:00")

    with Session(engine) as session:
        stored = session.get(models.Quiz, quiz["id"])
        user = session.get(models.User, student["id"])
        assert stored.start_time == datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert user.created_at.tzinfo is not None
        assert user.created_at <= models.utcnow()
        assert models.utcnow() - user.created_at < timedelta(minutes=5)
