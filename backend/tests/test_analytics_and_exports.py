import csv
import io

from fastapi.testclient import TestClient

from quizweb.analytics import difficulty_for, score_bucket, time_bucket
from quizweb.main import app

from helpers import add_question, classroom, make_quiz, make_user, take_quiz

client = TestClient(app)


def _scored_class():
    """Two students on a 4-point quiz: A scores 4/4, B scores 1/4."""
    (teacher, t_headers), cls, [(a, a_headers), (b, b_headers)] = classroom(client, students=2)
    quiz = make_quiz(client, t_headers, cls["id"], title="Cells")
    q1 = add_question(client, t_headers, quiz["id"], "A", points=1, text="First")
    q2 = add_question(client, t_headers, quiz["id"], "nucleus", qtype="short-answer", points=3, text="Second")
    take_quiz(client, a_headers, quiz["id"], [(q1["id"], "A"), (q2["id"], "Nucleus")])
    take_quiz(client, b_headers, quiz["id"], [(q1["id"], "A"), (q2["id"], "ribosome")])
    return (teacher, t_headers), cls, quiz, (a, a_headers), (b, b_headers)


def test_bucket_helpers():
    assert difficulty_for(85) == "Easy"
    assert difficulty_for(60) == "Medium"
    assert difficulty_for(59.9) == "Hard"
    assert time_bucket(30) == "<1 min"
    assert time_bucket(200) == "3-5 min"
    assert time_bucket(None) == "<1 min"
    assert time_bucket(900) == ">10 min"
    assert score_bucket(100) == "90-100"
    assert score_bucket(25) == "below 60"


def test_teacher_dashboard():
    (_, t_headers), cls, quiz, (a, _), _ = _scored_class()
    make_quiz(client, t_headers, cls["id"], published=False, title="Later")

    r = client.get("/api/analytics", headers=t_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["total_students"] == 2
    assert data["total_quizzes"] == 2
    assert data["published_quizzes"] == 1
    assert data["average_score"] == 62.5
    assert data["new_students_this_week"] == 2
    assert len(data["performance_over_time"]["labels"]) == 7
    assert data["performance_over_time"]["participation"][-1] == 2
    assert data["quiz_difficulty"] == [
        {"quiz_id": quiz["id"], "title": "Cells", "average_score": 62.5, "difficulty": "Medium"}
    ]
    assert data["top_students"][0]["student_id"] == a["id"]
    assert len(data["recent_attempts"]) == 2


def test_dashboard_is_teacher_only():
    _, s_headers = make_user(client, "student")
    assert client.get("/api/analytics", headers=s_headers).status_code == 403


def test_student_performance_access_and_content():
    (_, t_headers), cls, quiz, (a, a_headers), (b, b_headers) = _scored_class()
    _, stranger = make_user(client, "teacher")

    mine = client.get(f"/api/analytics/student-performance/{b['id']}", headers=b_headers)
    assert mine.status_code == 200
    body = mine.json()
    assert body["overall_performance"]["total_attempts"] == 1
    assert body["overall_performance"]["average_score"] == 25.0
    assert body["subject_performance"][0]["class_name"] == cls["name"]
    assert body["recent_attempts"][0]["rank"] == 2
    assert len(body["improvement_trend"]) == 6

    assert client.get(f"/api/analytics/student-performance/{b['id']}", headers=t_headers).status_code == 200
    assert client.get(f"/api/analytics/student-performance/{b['id']}", headers=a_headers).status_code == 403
    assert client.get(f"/api/analytics/student-performance/{b['id']}", headers=stranger).status_code == 403


def test_classroom_and_quiz_analytics():
    (_, t_headers), cls, quiz, (a, _), (b, _) = _scored_class()
    overview = client.get(f"/api/analytics/classroom-overview/{cls['id']}", headers=t_headers).json()
    assert overview["total_students"] == 2
    assert overview["active_quizzes"] == 1
    assert overview["participation_rate"] == 100.0

    qa = client.get(f"/api/analytics/quiz-analytics/{quiz['id']}", headers=t_headers).json()
    assert qa["total_attempts"] == 2
    assert qa["average_score"] == 62.5
    assert qa["difficulty_level"] == "Medium"
    assert qa["completion_rate"] == 100.0
    accuracy = {q["question_text"]: q["accuracy"] for q in qa["question_performance"]}
    assert accuracy == {"First": 100.0, "Second": 50.0}
    assert qa["score_distribution"]["90-100"] == 1
    assert qa["score_distribution"]["below 60"] == 1
    assert sum(qa["time_taken_distribution"].values()) == 2
    assert qa["highest_performing_students"][0]["student_id"] == a["id"]
    assert qa["lowest_performing_students"][0]["student_id"] == b["id"]

    _, other = make_user(client, "teacher")
    assert client.get(f"/api/analytics/quiz-analytics/{quiz['id']}", headers=other).status_code == 403
    assert client.get("/api/analytics/classroom-overview/missing", headers=t_headers).status_code == 404


def test_student_analytics_in_class():
    (_, t_headers), cls, quiz, (a, _), _ = _scored_class()
    make_quiz(client, t_headers, cls["id"], title="Unattempted")
    r = client.get(f"/api/analytics/student-analytics/{cls['id']}/{a['id']}", headers=t_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["average_accuracy"] == 100.0
    assert body["attendance_rate"] == 50.0
    assert body["quiz_scores"][0]["quiz_title"] == "Cells"

    outsider, _ = make_user(client, "student")
    url = f"/api/analytics/student-analytics/{cls['id']}/{outsider['id']}"
    assert client.get(url, headers=t_headers).status_code == 404


def test_leaderboard_filters_and_pagination():
    (_, t_headers), cls, _, (a, a_headers), (b, _) = _scored_class()
    url = f"/api/analytics/leaderboard/{cls['id']}"

    full = client.get(url, headers=a_headers).json()
    assert [r["student_id"] for r in full["leaderboard"]] == [a["id"], b["id"]]
    assert full["stats"] == {"total_students": 2, "average_score": 2.5, "min_score": 1, "max_score": 4}

    page = client.get(url, params={"limit": 1, "offset": 0}, headers=t_headers).json()
    assert len(page["leaderboard"]) == 1
    assert page["pagination"] == {"total": 2, "limit": 1, "offset": 0, "has_more": True}

    assert client.get(url, params={"min_score": 2}, headers=t_headers).json()["pagination"]["total"] == 1
    assert client.get(url, params={"search": "student b"}, headers=t_headers).json()["leaderboard"][0]["student_id"] == b["id"]
    assert client.get(url, params={"end_date": "2000-01-01T00:00:00"}, headers=t_headers).json()["leaderboard"] == []

    _, outsider = make_user(client, "student")
    assert client.get(url, headers=outsider).status_code == 403


def test_my_performance():
    (_, t_headers), cls, _, (a, a_headers), _ = _scored_class()
    mine = client.get(f"/api/analytics/my-performance/{cls['id']}", headers=a_headers).json()
    assert mine["total_score"] == 4
    assert mine["rank"] == 1
    assert mine["quiz_scores"][0]["percentage"] == 100.0

    (_, _), other_cls, [(_, fresh_headers)] = classroom(client, students=1)
    empty = client.get(f"/api/analytics/my-performance/{other_cls['id']}", headers=fresh_headers).json()
    assert empty["rank"] == "N/A"
    assert client.get(f"/api/analytics/my-performance/{other_cls['id']}", headers=a_headers).status_code == 403


def test_csv_export_reports():
    (_, t_headers), cls, quiz, _, _ = _scored_class()
    r = client.get("/api/analytics/export", params={"format": "csv", "report_type": "per-student-analytics", "class_id": cls["id"]},
                   headers=t_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[0] == ["Student", "Email", "Quizzes completed", "Average %", "Total score", "Rank"]
    assert len(rows) == 3

    r = client.get("/api/analytics/export", params={"format": "csv", "report_type": "per-quiz-analytics", "quiz_id": quiz["id"]},
                   headers=t_headers)
    rows = list(csv.reader(io.StringIO(r.text)))
    assert [row[0] for row in rows[1:]] == ["First", "Second"]

    r = client.get("/api/analytics/export", params={"format": "csv", "report_type": "leaderboard", "class_id": cls["id"]},
                   headers=t_headers)
    assert list(csv.reader(io.StringIO(r.text)))[1][0] == "1"


def test_pdf_export_and_validation():
    (_, t_headers), cls, quiz, _, _ = _scored_class()
    r = client.get("/api/analytics/export", params={"format": "pdf", "report_type": "classroom-overview", "class_id": cls["id"]},
                   headers=t_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")

    base = "/api/analytics/export"
    assert client.get(base, params={"format": "xml", "report_type": "leaderboard", "class_id": cls["id"]}, headers=t_headers).status_code == 400
    assert client.get(base, params={"format": "csv", "report_type": "nope", "class_id": cls["id"]}, headers=t_headers).status_code == 400
    assert client.get(base, params={"format": "csv", "report_type": "leaderboard"}, headers=t_headers).status_code == 400
    assert client.get(base, params={"format": "csv", "report_type": "per-quiz-analytics"}, headers=t_headers).status_code == 400
    _, other = make_user(client, "teacher")
    assert client.get(base, params={"format": "csv", "report_type": "leaderboard", "class_id": cls["id"]}, headers=other).status_code == 403


def test_grade_card_pdf():
    (_, t_headers), cls, _, (_, a_headers), _ = _scored_class()
    r = client.get(f"/api/grade-card/{cls['id']}", headers=a_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")

    _, outsider = make_user(client, "student")
    assert client.get(f"/api/grade-card/{cls['id']}", headers=outsider).status_code == 404
    assert client.get(f"/api/grade-card/{cls['id']}", headers=t_headers).status_code == 403
