"""Small HTTP helpers shared by the API tests."""

import itertools

PASSWORD = "secret123"
_counter = itertools.count(1)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_user(client, role: str, name: str = None):
    """Sign up and sign in a fresh user; return `(user, headers)`."""
    n = next(_counter)
    email = f"{role}{n}@example.com"
    r = client.post("/api/auth/signup", json={
        "email": email, "password": PASSWORD, "role": role, "display_name": name or f"{role.title()} {n}",
    })
    assert r.status_code == 201, r.text
    login = client.post("/api/auth/signin", json={"email": email, "password": PASSWORD, "role": role})
    assert login.status_code == 200, login.text
    body = login.json()
    return body["user"], auth_headers(body["token"])


def make_class(client, teacher_headers, name: str = "Algebra") -> dict:
    r = client.post("/api/classes", json={"name": name, "description": "test class"}, headers=teacher_headers)
    assert r.status_code == 201, r.text
    return r.json()


def enroll(client, student_headers, class_id: str) -> dict:
    r = client.post("/api/enrollments", json={"class_id": class_id}, headers=student_headers)
    assert r.status_code == 201, r.text
    return r.json()["enrollment"]


def make_quiz(client, teacher_headers, class_id=None, published=True, **extra) -> dict:
    payload = {"title": extra.pop("title", "Quiz"), "class_id": class_id, "is_published": published}
    payload.update(extra)
    r = client.post("/api/quizzes", json=payload, headers=teacher_headers)
    assert r.status_code == 201, r.text
    return r.json()


def add_question(client, teacher_headers, quiz_id: str, correct: str, qtype: str = "multiple-choice",
                 points: int = 1, options=None, text: str = "Question?") -> dict:
    r = client.post(f"/api/quizzes/{quiz_id}/questions", json={
        "question_text": text,
        "question_type": qtype,
        "correct_answer": correct,
        "points": points,
        "options": options if options is not None else [],
    }, headers=teacher_headers)
    assert r.status_code == 201, r.text
    return r.json()


def start_attempt(client, student_headers, quiz_id: str) -> dict:
    r = client.post("/api/attempts", json={"quiz_id": quiz_id}, headers=student_headers)
    assert r.status_code == 201, r.text
    return r.json()["attempt"]


def take_quiz(client, student_headers, quiz_id: str, answers) -> dict:
    """Start an attempt and submit `answers` as `[(question_id, answer), ...]`."""
    attempt = start_attempt(client, student_headers, quiz_id)
    r = client.post(
        f"/api/attempts/{attempt['id']}/submit",
        json={"answers": [{"question_id": q, "answer": a} for q, a in answers]},
        headers=student_headers,
    )
    assert r.status_code == 200, r.text
    return r.json()


def classroom(client, students: int = 1):
    """A teacher, a class and `students` enrolled students."""
    teacher, t_headers = make_user(client, "teacher", "Ms Teacher")
    cls = make_class(client, t_headers)
    enrolled = []
    for i in range(students):
        student, s_headers = make_user(client, "student", f"Student {chr(65 + i)}")
        enroll(client, s_headers, cls["id"])
        enrolled.append((student, s_headers))
    return (teacher, t_headers), cls, enrolled
