"""Aggregate reports for dashboards, leaderboards, exports and grade cards.

All scores are reported as percentages of the attempt's possible points so
quizzes of different sizes compare fairly. Aggregation is done in Python
over the rows the repositories return; class sizes here are small.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from statistics import mean
from typing import Dict, List, Optional

from sqlmodel import Session

from . import models, repositories
from .errors import NotFound, PermissionDenied, ValidationFailed
from .services import percentage, quiz_status

logger = logging.getLogger("quizweb.analytics")

REPORT_TYPES = ("classroom-overview", "per-quiz-analytics", "per-student-analytics", "leaderboard")
EXPORT_FORMATS = ("csv", "pdf")


def _avg(values) -> float:
    values = list(values)
    return round(mean(values), 2) if values else 0.0


def difficulty_for(average: float) -> str:
    if average >= 80:
        return "Easy"
    if average >= 60:
        return "Medium"
    return "Hard"


def time_bucket(seconds: Optional[int]) -> str:
    minutes = (seconds or 0) / 60.0
    if minutes < 1:
        return "<1 min"
    if minutes < 3:
        return "1-3 min"
    if minutes < 5:
        return "3-5 min"
    if minutes < 10:
        return "5-10 min"
    return ">10 min"


def score_bucket(pct: float) -> str:
    if pct >= 90:
        return "90-100"
    if pct >= 80:
        return "80-89"
    if pct >= 70:
        return "70-79"
    if pct >= 60:
        return "60-69"
    return "below 60"


def _pct(attempt: models.Attempt) -> float:
    return percentage(attempt.score, attempt.total_points)


def _month_start(day: date, months_back: int) -> date:
    year, month = day.year, day.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


class AnalyticsService:
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.class_repo = repositories.ClassRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)
        self.question_repo = repositories.QuestionRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)
        self.answer_repo = repositories.AnswerRepository(session)
        self.board_repo = repositories.LeaderboardRepository(session)

    # access helpers

    def _owned_class(self, teacher: models.User, class_id: str) -> models.ClassRoom:
        cls = self.class_repo.get(class_id)
        if cls is None:
            raise NotFound("Class not found")
        if cls.teacher_id != teacher.id:
            raise PermissionDenied("You do not own this class")
        return cls

    def _owned_quiz(self, teacher: models.User, quiz_id: str) -> models.Quiz:
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        if quiz.teacher_id != teacher.id:
            raise PermissionDenied("You do not own this quiz")
        return quiz

    def _completed(self, **filters):
        return self.attempt_repo.list_scoped(is_completed=True, **filters)

    # teacher dashboard

    def dashboard(self, teacher: models.User) -> dict:
        now = models.utcnow()
        enrollments = self.enrollment_repo.list_scoped(teacher_id=teacher.id)
        quizzes = self.quiz_repo.list_owned(teacher.id)
        attempts = self._completed(teacher_id=teacher.id)

        week_ago = now - timedelta(days=7)
        recent_window = [_pct(a) for a, _, _ in attempts if a.submitted_at and a.submitted_at >= now - timedelta(days=30)]
        previous_window = [
            _pct(a) for a, _, _ in attempts
            if a.submitted_at and now - timedelta(days=60) <= a.submitted_at < now - timedelta(days=30)
        ]
        previous_avg = _avg(previous_window)
        improvement = round((_avg(recent_window) - previous_avg) * 100.0 / previous_avg, 2) if previous_avg else 0.0

        labels, scores, participation = [], [], []
        for offset in range(6, -1, -1):
            day = (now - timedelta(days=offset)).date()
            day_scores = [_pct(a) for a, _, _ in attempts if a.submitted_at and a.submitted_at.date() == day]
            labels.append(day.isoformat())
            scores.append(_avg(day_scores))
            participation.append(len(day_scores))

        per_quiz: Dict[str, List[float]] = defaultdict(list)
        per_student: Dict[str, List[float]] = defaultdict(list)
        names = {}
        for attempt, quiz, student in attempts:
            per_quiz[quiz.id].append(_pct(attempt))
            per_student[student.id].append(_pct(attempt))
            names[student.id] = student.display_name
        difficulty = []
        for quiz in quizzes:
            if not quiz.is_published or not per_quiz.get(quiz.id):
                continue
            avg = _avg(per_quiz[quiz.id])
            difficulty.append({"quiz_id": quiz.id, "title": quiz.title, "average_score": avg, "difficulty": difficulty_for(avg)})

        top_students = sorted(
            ({"student_id": sid, "display_name": names[sid], "average_score": _avg(vals), "attempts": len(vals)}
             for sid, vals in per_student.items()),
            key=lambda r: (-r["average_score"], r["display_name"]),
        )[:5]

        recent = sorted(attempts, key=lambda row: row[0].submitted_at, reverse=True)[:10]
        return {
            "total_students": len({e.student_id for e, _, _, _ in enrollments}),
            "total_quizzes": len(quizzes),
            "published_quizzes": sum(1 for q in quizzes if q.is_published),
            "active_quizzes": sum(
                1 for q in quizzes
                if q.is_published and q.start_time and q.end_time and q.start_time <= now <= q.end_time
            ),
            "average_score": _avg(_pct(a) for a, _, _ in attempts),
            "new_students_this_week": len({e.student_id for e, _, _, _ in enrollments if e.enrolled_at >= week_ago}),
            "score_improvement": improvement,
            "performance_over_time": {"labels": labels, "scores": scores, "participation": participation},
            "quiz_difficulty": difficulty,
            "top_students": top_students,
            "recent_attempts": [self._attempt_row(a, q, s) for a, q, s in recent],
        }

    @staticmethod
    def _attempt_row(attempt: models.Attempt, quiz: models.Quiz, student: models.User) -> dict:
        return {
            "attempt_id": attempt.id,
            "quiz_id": quiz.id,
            "quiz_title": quiz.title,
            "student_id": student.id,
            "student_name": student.display_name,
            "score": attempt.score,
            "total_points": attempt.total_points,
            "percentage": _pct(attempt),
            "time_taken": attempt.time_taken,
            "submitted_at": attempt.submitted_at,
        }

    # per-student

    def student_performance(self, viewer: models.User, student_id: str) -> dict:
        """Performance summary visible to the student or one of their teachers."""
        student = self.user_repo.get(student_id)
        if student is None or student.role != models.UserRole.STUDENT.value:
            raise NotFound("Student not found")
        if viewer.id != student_id and not (
            viewer.role == models.UserRole.TEACHER.value
            and self.enrollment_repo.teacher_has_student(viewer.id, student_id)
        ):
            raise PermissionDenied("You do not have access to this student's performance")

        now = models.utcnow()
        attempts = self._completed(student_id=student_id)
        pcts = [_pct(a) for a, _, _ in attempts]

        daily: Dict[str, List[float]] = defaultdict(list)
        for attempt, _, _ in attempts:
            if attempt.submitted_at and attempt.submitted_at >= now - timedelta(days=30):
                daily[attempt.submitted_at.date().isoformat()].append(_pct(attempt))

        by_class: Dict[str, List[float]] = defaultdict(list)
        for attempt, quiz, _ in attempts:
            if quiz.class_id:
                by_class[quiz.class_id].append(_pct(attempt))
        subjects = []
        for class_id, vals in by_class.items():
            cls = self.class_repo.get(class_id)
            subjects.append({"class_id": class_id, "class_name": cls.name if cls else None, "average_score": _avg(vals), "attempts": len(vals)})

        recent = []
        for attempt, quiz, s in sorted(attempts, key=lambda row: row[0].submitted_at, reverse=True)[:10]:
            row = self._attempt_row(attempt, quiz, s)
            others = self._completed(quiz_id=quiz.id)
            row["rank"] = 1 + sum(1 for other, _, _ in others if (other.score or 0) > (attempt.score or 0))
            row["total_participants"] = len({other.student_id for other, _, _ in others})
            recent.append(row)

        trend = []
        today = now.date()
        for back in range(5, -1, -1):
            start = _month_start(today, back)
            end = _month_start(today, back - 1) if back else date.max
            vals = [_pct(a) for a, _, _ in attempts if a.submitted_at and start <= a.submitted_at.date() < end]
            trend.append({"month": start.strftime("%Y-%m"), "average_score": _avg(vals), "attempts": len(vals)})

        return {
            "student": {"id": student.id, "display_name": student.display_name, "avatar": student.avatar},
            "overall_performance": {
                "total_attempts": len(attempts),
                "average_score": _avg(pcts),
                "best_score": max(pcts) if pcts else 0.0,
                "total_points_earned": sum(a.score or 0 for a, _, _ in attempts),
            },
            "performance_over_time": [
                {"date": day, "average_score": _avg(vals), "attempts": len(vals)} for day, vals in sorted(daily.items())
            ],
            "subject_performance": subjects,
            "recent_attempts": recent,
            "improvement_trend": trend,
        }

    # per-class

    def classroom_overview(self, teacher: models.User, class_id: str) -> dict:
        cls = self._owned_class(teacher, class_id)
        now = models.utcnow()
        students = set(self.enrollment_repo.student_ids(class_id))
        quizzes = self.quiz_repo.list_for_class(class_id)
        quiz_ids = {q.id for q in quizzes}
        attempts = [row for row in self._completed(teacher_id=teacher.id) if row[1].id in quiz_ids]
        participants = {a.student_id for a, _, _ in attempts} & students
        return {
            "class_id": cls.id,
            "class_name": cls.name,
            "total_students": len(students),
            "total_quizzes": len(quizzes),
            "active_quizzes": sum(1 for q in quizzes if quiz_status(q, now) == "Active"),
            "average_score": _avg(_pct(a) for a, _, _ in attempts),
            "participation_rate": round(len(participants) * 100.0 / len(students), 2) if students else 0.0,
        }

    def quiz_analytics(self, teacher: models.User, quiz_id: str) -> dict:
        quiz = self._owned_quiz(teacher, quiz_id)
        all_attempts = self.attempt_repo.list_scoped(quiz_id=quiz.id)
        completed = [row for row in all_attempts if row[0].is_completed]
        pcts = [_pct(a) for a, _, _ in completed]

        answers = self.answer_repo.list_scoped(teacher_id=teacher.id)
        by_question: Dict[str, List[models.Answer]] = defaultdict(list)
        for answer in answers:
            by_question[answer.question_id].append(answer)
        question_performance = []
        for question in self.question_repo.list_for_quiz(quiz.id):
            rows = by_question.get(question.id, [])
            correct = sum(1 for a in rows if a.is_correct)
            question_performance.append({
                "question_id": question.id,
                "question_text": question.question_text,
                "question_type": question.question_type,
                "total_answers": len(rows),
                "correct_answers": correct,
                "accuracy": round(correct * 100.0 / len(rows), 2) if rows else 0.0,
            })

        time_distribution = {label: 0 for label in ("<1 min", "1-3 min", "3-5 min", "5-10 min", ">10 min")}
        score_distribution = {label: 0 for label in ("90-100", "80-89", "70-79", "60-69", "below 60")}
        per_student: Dict[str, List[float]] = defaultdict(list)
        names = {}
        for attempt, _, student in completed:
            time_distribution[time_bucket(attempt.time_taken)] += 1
            score_distribution[score_bucket(_pct(attempt))] += 1
            per_student[student.id].append(_pct(attempt))
            names[student.id] = student.display_name
        ranked = sorted(
            ({"student_id": sid, "display_name": names[sid], "average_score": _avg(vals)} for sid, vals in per_student.items()),
            key=lambda r: (-r["average_score"], r["display_name"]),
        )
        top_attempts = sorted(completed, key=lambda row: (-(row[0].score or 0), row[0].time_taken or 0))[:5]
        average = _avg(pcts)
        return {
            "quiz_id": quiz.id,
            "quiz_title": quiz.title,
            "average_score": average,
            "total_attempts": len(completed),
            "difficulty_level": difficulty_for(average) if completed else "N/A",
            "completion_rate": round(len(completed) * 100.0 / len(all_attempts), 2) if all_attempts else 0.0,
            "question_performance": question_performance,
            "time_taken_distribution": time_distribution,
            "highest_performing_students": ranked[:5],
            "lowest_performing_students": list(reversed(ranked))[:5],
            "top_performers": [self._attempt_row(a, q, s) for a, q, s in top_attempts],
            "score_distribution": score_distribution,
        }

    def student_analytics(self, teacher: models.User, class_id: str, student_id: str) -> dict:
        self._owned_class(teacher, class_id)
        if not self.enrollment_repo.is_enrolled(class_id, student_id):
            raise NotFound("Student is not enrolled in this class")
        student = self.user_repo.get(student_id)
        rows = self.attempt_repo.completed_in_class(student_id, class_id)
        published = self.quiz_repo.list_for_class(class_id, published_only=True)
        completed_quizzes = {quiz.id for _, quiz in rows}
        return {
            "student_id": student_id,
            "display_name": student.display_name,
            "quiz_scores": [
                {
                    "quiz_id": quiz.id,
                    "quiz_title": quiz.title,
                    "score": attempt.score,
                    "total_points": attempt.total_points,
                    "percentage": _pct(attempt),
                    "submitted_at": attempt.submitted_at,
                }
                for attempt, quiz in rows
            ],
            "average_accuracy": _avg(_pct(a) for a, _ in rows),
            "attendance_rate": round(len(completed_quizzes) * 100.0 / len(published), 2) if published else 0.0,
        }

    # leaderboard

    def leaderboard(
        self,
        viewer: models.User,
        class_id: str,
        search: Optional[str] = None,
        min_score: Optional[int] = None,
        max_score: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> dict:
        """Filtered, paginated class leaderboard ordered by rank."""
        cls = self.class_repo.get(class_id)
        if cls is None:
            raise NotFound("Class not found")
        if cls.teacher_id != viewer.id and not self.enrollment_repo.is_enrolled(class_id, viewer.id):
            raise PermissionDenied("You do not have access to this leaderboard")
        start_date = models.as_utc(start_date)
        end_date = models.as_utc(end_date)

        rows = []
        for entry, user in self.board_repo.ranked_with_names(class_id):
            if search and search.strip().lower() not in user.display_name.lower():
                continue
            if min_score is not None and entry.total_score < min_score:
                continue
            if max_score is not None and entry.total_score > max_score:
                continue
            if start_date and entry.updated_at < start_date:
                continue
            if end_date and entry.updated_at > end_date:
                continue
            rows.append({
                "student_id": entry.student_id,
                "display_name": user.display_name,
                "avatar": user.avatar,
                "total_score": entry.total_score,
                "rank": entry.student_rank,
                "updated_at": entry.updated_at,
            })
        scores = [r["total_score"] for r in rows]
        return {
            "class_id": class_id,
            "leaderboard": rows[offset:offset + limit],
            "pagination": {
                "total": len(rows),
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < len(rows),
            },
            "stats": {
                "total_students": len(rows),
                "average_score": _avg(scores),
                "min_score": min(scores) if scores else 0,
                "max_score": max(scores) if scores else 0,
            },
        }

    def my_performance(self, student: models.User, class_id: str) -> dict:
        if not self.enrollment_repo.is_enrolled(class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        entry = self.board_repo.get_entry(class_id, student.id)
        rows = self.attempt_repo.completed_in_class(student.id, class_id)
        return {
            "class_id": class_id,
            "total_score": entry.total_score if entry else 0,
            "rank": entry.student_rank if entry and entry.student_rank else "N/A",
            "quiz_scores": [
                {
                    "quiz_id": quiz.id,
                    "quiz_title": quiz.title,
                    "score": attempt.score,
                    "total_points": attempt.total_points,
                    "percentage": _pct(attempt),
                    "submitted_at": attempt.submitted_at,
                }
                for attempt, quiz in rows
            ],
        }

    # exports

    def export_table(self, teacher: models.User, report_type: str, class_id: Optional[str] = None, quiz_id: Optional[str] = None):
        """Return `(title, headers, rows, filename_stem)` for an export."""
        if report_type not in REPORT_TYPES:
            raise ValidationFailed(f"report_type must be one of: {', '.join(REPORT_TYPES)}")
        if report_type == "per-quiz-analytics":
            if not quiz_id:
                raise ValidationFailed("quiz_id is required for this report")
            return self._quiz_table(teacher, quiz_id)
        if not class_id:
            raise ValidationFailed("class_id is required for this report")
        cls = self._owned_class(teacher, class_id)
        if report_type == "classroom-overview":
            return self._class_table(teacher, cls)
        if report_type == "per-student-analytics":
            return self._students_table(cls)
        return self._leaderboard_table(cls)

    def _class_table(self, teacher: models.User, cls: models.ClassRoom):
        now = models.utcnow()
        attempts = self._completed(teacher_id=teacher.id)
        rows = []
        for quiz in self.quiz_repo.list_for_class(cls.id):
            pcts = [_pct(a) for a, q, _ in attempts if q.id == quiz.id]
            rows.append([quiz.title, quiz_status(quiz, now), quiz.total_points, len(pcts), _avg(pcts)])
        headers = ["Quiz", "Status", "Total points", "Attempts", "Average %"]
        return f"Classroom overview: {cls.name}", headers, rows, f"classroom-overview-{cls.id[:8]}"

    def _quiz_table(self, teacher: models.User, quiz_id: str):
        report = self.quiz_analytics(teacher, quiz_id)
        headers = ["Question", "Type", "Answers", "Correct", "Accuracy %"]
        rows = [
            [q["question_text"], q["question_type"], q["total_answers"], q["correct_answers"], q["accuracy"]]
            for q in report["question_performance"]
        ]
        return f"Quiz analytics: {report['quiz_title']}", headers, rows, f"per-quiz-analytics-{quiz_id[:8]}"

    def _students_table(self, cls: models.ClassRoom):
        rows = []
        for _, student in self.enrollment_repo.list_students(cls.id):
            attempts = self.attempt_repo.completed_in_class(student.id, cls.id)
            entry = self.board_repo.get_entry(cls.id, student.id)
            rows.append([
                student.display_name,
                student.email,
                len(attempts),
                _avg(_pct(a) for a, _ in attempts),
                entry.total_score if entry else 0,
                entry.student_rank if entry and entry.student_rank else "N/A",
            ])
        headers = ["Student", "Email", "Quizzes completed", "Average %", "Total score", "Rank"]
        return f"Student analytics: {cls.name}", headers, rows, f"per-student-analytics-{cls.id[:8]}"

    def _leaderboard_table(self, cls: models.ClassRoom):
        rows = [
            [entry.student_rank, user.display_name, entry.total_score, entry.updated_at.strftime("%Y-%m-%d %H:%M")]
            for entry, user in self.board_repo.ranked_with_names(cls.id)
        ]
        return f"Leaderboard: {cls.name}", ["Rank", "Student", "Total score", "Updated"], rows, f"leaderboard-{cls.id[:8]}"

    # grade card

    def grade_card(self, student: models.User, class_id: str) -> dict:
        """Data for a student's grade card in one class."""
        cls = self.class_repo.get(class_id)
        if cls is None or not self.enrollment_repo.is_enrolled(class_id, student.id):
            raise NotFound("Class not found or you are not enrolled")
        teacher = self.user_repo.get(cls.teacher_id)
        rows = sorted(self.attempt_repo.completed_in_class(student.id, class_id), key=lambda row: row[0].submitted_at)
        entry = self.board_repo.get_entry(class_id, student.id)
        return {
            "student_name": student.display_name,
            "student_email": student.email,
            "class_name": cls.name,
            "teacher_name": teacher.display_name if teacher else None,
            "quizzes": [
                {
                    "title": quiz.title,
                    "score": attempt.score or 0,
                    "total_points": attempt.total_points or 0,
                    "percentage": _pct(attempt),
                    "submitted_at": attempt.submitted_at,
                }
                for attempt, quiz in rows
            ],
            "average_percentage": _avg(_pct(a) for a, _ in rows),
            "rank": entry.student_rank if entry and entry.student_rank else "N/A",
            "generated_at": models.utcnow(),
        }
