"""CLI script to seed a demo teacher, class, quiz and students into the backend DB.
Usage: python scripts/seed_demo.py [--students N] [--password PASSWORD]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `quizweb` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from quizweb.database import engine, create_db_and_tables
from quizweb import services
from quizweb.errors import Conflict

DEMO_QUESTIONS = [
    {"question_text": "What is 7 x 8?", "question_type": "multiple-choice",
     "options": ["54", "56", "64"], "correct_answer": "56", "points": 2},
    {"question_text": "A square has four equal sides.", "question_type": "true-false",
     "options": ["True", "False"], "correct_answer": "True", "points": 1},
    {"question_text": "Name the longest side of a right triangle.", "question_type": "short-answer",
     "correct_answer": "hypotenuse", "points": 3},
]


def _user(session, email, password, role, name):
    auth = services.AuthService(session)
    try:
        return auth.register(email, password, role, name)
    except Conflict:
        return auth.user_repo.get_by_email(email)


def main(students: int = 3, password: str = "demo1234"):
    """Create (or reuse) demo accounts and a published quiz.

    Accounts are keyed by email so the script can be rerun safely; the
    class and quiz are created fresh on every run.
    """
    create_db_and_tables()
    with Session(engine) as session:
        teacher = _user(session, "teacher@demo.quizweb", password, "teacher", "Demo Teacher")
        cls = services.ClassService(session).create(teacher, "Demo Maths", "Seeded demo class")
        quiz = services.QuizService(session).create(teacher, {
            "title": "Warm-up quiz",
            "description": "Three quick questions",
            "class_id": cls["id"],
            "is_published": True,
            "time_limit": 10,
        })
        questions = services.QuestionService(session)
        for q in DEMO_QUESTIONS:
            questions.create(teacher, quiz["id"], q, append=True)

        enrollments = services.EnrollmentService(session)
        for n in range(1, students + 1):
            student = _user(session, f"student{n}@demo.quizweb", password, "student", f"Demo Student {n}")
            enrollments.enroll(student, cls["id"])

    print(f"Teacher: teacher@demo.quizweb / {password}")
    print(f"Class '{cls['name']}' code: {cls['class_code']}")
    print(f"Quiz '{quiz['title']}' with {len(DEMO_QUESTIONS)} questions")
    print(f"Students: {students} (student1@demo.quizweb .. student{students}@demo.quizweb)")


if __name__ == '__main__':
    p = argparse.ArgumentParser(description='Seed demo data for local development')
    p.add_argument('--students', type=int, default=3, help='Number of demo students to enroll')
    p.add_argument('--password', default='demo1234', help='Password for every demo account')
    args = p.parse_args()
    main(students=args.students, password=args.password)
