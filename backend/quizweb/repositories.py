"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
classes, enrollments, quizzes, questions, attempts, answers, leaderboard
entries, connections, challenges, notifications). Repositories return
SQLModel objects. Writes are flushed but never committed: the calling
service owns the transaction and commits once its whole workflow succeeded.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, and_
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from . import models


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, obj):
        """Stage `obj`, flush to obtain defaults and return it."""
        self.session.add(obj)
        self.session.flush()
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.flush()


class UserRepository(_Repository):
    """Lookups for `User` objects."""

    def get(self, user_id: str) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by case-insensitive email or `None`."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def list(self, role: Optional[str] = None) -> List[models.User]:
        stmt = select(models.User)
        if role:
            stmt = stmt.where(models.User.role == role)
        return self.session.exec(stmt.order_by(models.User.display_name)).all()


class ClassRepository(_Repository):
    """Queries for classes and their owners."""

    def get(self, class_id: str) -> Optional[models.ClassRoom]:
        return self.session.get(models.ClassRoom, class_id)

    def get_owned(self, class_id: str, teacher_id: str) -> Optional[models.ClassRoom]:
        """Return the class only when `teacher_id` owns it."""
        stmt = select(models.ClassRoom).where(
            models.ClassRoom.id == class_id,
            models.ClassRoom.teacher_id == teacher_id,
        )
        return self.session.exec(stmt).first()

    def get_by_code(self, class_code: str) -> Optional[models.ClassRoom]:
        stmt = select(models.ClassRoom).where(models.ClassRoom.class_code == class_code.strip().upper())
        return self.session.exec(stmt).first()

    def list_for_teacher(self, teacher_id: str) -> List[Tuple[models.ClassRoom, models.User]]:
        stmt = (
            select(models.ClassRoom, models.User)
            .join(models.User, models.ClassRoom.teacher_id == models.User.id)
            .where(models.ClassRoom.teacher_id == teacher_id)
            .order_by(models.ClassRoom.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def list_for_student(self, student_id: str) -> List[Tuple[models.ClassRoom, models.User]]:
        stmt = (
            select(models.ClassRoom, models.User)
            .join(models.User, models.ClassRoom.teacher_id == models.User.id)
            .join(models.Enrollment, models.Enrollment.class_id == models.ClassRoom.id)
            .where(models.Enrollment.student_id == student_id)
            .order_by(models.Enrollment.enrolled_at.desc())
        )
        return self.session.exec(stmt).all()


class EnrollmentRepository(_Repository):
    """Queries for class membership."""

    def get(self, enrollment_id: str) -> Optional[models.Enrollment]:
        return self.session.get(models.Enrollment, enrollment_id)

    def get_for(self, class_id: str, student_id: str) -> Optional[models.Enrollment]:
        stmt = select(models.Enrollment).where(
            models.Enrollment.class_id == class_id,
            models.Enrollment.student_id == student_id,
        )
        return self.session.exec(stmt).first()

    def is_enrolled(self, class_id: str, student_id: str) -> bool:
        return self.get_for(class_id, student_id) is not None

    def list_students(self, class_id: str) -> List[Tuple[models.Enrollment, models.User]]:
        stmt = (
            select(models.Enrollment, models.User)
            .join(models.User, models.Enrollment.student_id == models.User.id)
            .where(models.Enrollment.class_id == class_id)
            .order_by(models.User.display_name)
        )
        return self.session.exec(stmt).all()

    def student_ids(self, class_id: str) -> List[str]:
        stmt = select(models.Enrollment.student_id).where(models.Enrollment.class_id == class_id)
        return list(self.session.exec(stmt).all())

    def count_for_class(self, class_id: str) -> int:
        stmt = select(func.count(models.Enrollment.id)).where(models.Enrollment.class_id == class_id)
        return self.session.exec(stmt).one()

    def list_scoped(
        self,
        student_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> List[Tuple[models.Enrollment, models.ClassRoom, models.User, models.User]]:
        """Enrollment rows joined with class, teacher and student."""
        teacher = aliased(models.User)
        student = aliased(models.User)
        stmt = (
            select(models.Enrollment, models.ClassRoom, teacher, student)
            .join(models.ClassRoom, models.Enrollment.class_id == models.ClassRoom.id)
            .join(teacher, models.ClassRoom.teacher_id == teacher.id)
            .join(student, models.Enrollment.student_id == student.id)
        )
        if student_id:
            stmt = stmt.where(models.Enrollment.student_id == student_id)
        if teacher_id:
            stmt = stmt.where(models.ClassRoom.teacher_id == teacher_id)
        if class_id:
            stmt = stmt.where(models.Enrollment.class_id == class_id)
        return self.session.exec(stmt.order_by(models.Enrollment.enrolled_at.desc())).all()

    def teacher_has_student(self, teacher_id: str, student_id: str) -> bool:
        stmt = (
            select(models.Enrollment.id)
            .join(models.ClassRoom, models.Enrollment.class_id == models.ClassRoom.id)
            .where(models.ClassRoom.teacher_id == teacher_id, models.Enrollment.student_id == student_id)
        )
        return self.session.exec(stmt).first() is not None


class QuizRepository(_Repository):
    """Queries for quizzes."""

    def get(self, quiz_id: str) -> Optional[models.Quiz]:
        return self.session.get(models.Quiz, quiz_id)

    def list_for_teacher(self, teacher_id: str) -> List[Tuple[models.Quiz, models.User, Optional[models.ClassRoom]]]:
        stmt = (
            select(models.Quiz, models.User, models.ClassRoom)
            .join(models.User, models.Quiz.teacher_id == models.User.id)
            .join(models.ClassRoom, models.Quiz.class_id == models.ClassRoom.id, isouter=True)
            .where(models.Quiz.teacher_id == teacher_id)
            .order_by(models.Quiz.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def list_for_student(self, student_id: str) -> List[Tuple[models.Quiz, models.User, models.ClassRoom]]:
        """Published quizzes of the classes `student_id` is enrolled in."""
        stmt = (
            select(models.Quiz, models.User, models.ClassRoom)
            .join(models.User, models.Quiz.teacher_id == models.User.id)
            .join(models.ClassRoom, models.Quiz.class_id == models.ClassRoom.id)
            .join(models.Enrollment, models.Enrollment.class_id == models.ClassRoom.id)
            .where(models.Enrollment.student_id == student_id, models.Quiz.is_published == True)  # noqa: E712
            .order_by(models.Quiz.start_time.desc(), models.Quiz.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def list_for_class(self, class_id: str, published_only: bool = False) -> List[models.Quiz]:
        stmt = select(models.Quiz).where(models.Quiz.class_id == class_id)
        if published_only:
            stmt = stmt.where(models.Quiz.is_published == True)  # noqa: E712
        return self.session.exec(stmt).all()

    def list_owned(self, teacher_id: str) -> List[models.Quiz]:
        return self.session.exec(select(models.Quiz).where(models.Quiz.teacher_id == teacher_id)).all()


class QuestionRepository(_Repository):
    """Queries for quiz questions."""

    def get(self, question_id: str) -> Optional[models.Question]:
        return self.session.get(models.Question, question_id)

    def list_for_quiz(self, quiz_id: str) -> List[models.Question]:
        stmt = (
            select(models.Question)
            .where(models.Question.quiz_id == quiz_id)
            .order_by(models.Question.order_index, models.Question.created_at)
        )
        return self.session.exec(stmt).all()

    def next_order_index(self, quiz_id: str) -> int:
        stmt = select(func.max(models.Question.order_index)).where(models.Question.quiz_id == quiz_id)
        current = self.session.exec(stmt).one()
        return 0 if current is None else current + 1

    def sum_points(self, quiz_id: str) -> int:
        stmt = select(func.coalesce(func.sum(models.Question.points), 0)).where(models.Question.quiz_id == quiz_id)
        return int(self.session.exec(stmt).one())


class AttemptRepository(_Repository):
    """Queries for quiz attempts."""

    def get(self, attempt_id: str) -> Optional[models.Attempt]:
        return self.session.get(models.Attempt, attempt_id)

    def get_active(self, quiz_id: str, student_id: str) -> Optional[models.Attempt]:
        stmt = select(models.Attempt).where(
            models.Attempt.quiz_id == quiz_id,
            models.Attempt.student_id == student_id,
            models.Attempt.is_completed == False,  # noqa: E712
        )
        return self.session.exec(stmt).first()

    def get_active_for_student(self, attempt_id: str, student_id: str) -> Optional[models.Attempt]:
        stmt = select(models.Attempt).where(
            models.Attempt.id == attempt_id,
            models.Attempt.student_id == student_id,
            models.Attempt.is_completed == False,  # noqa: E712
        )
        return self.session.exec(stmt).first()

    def first_completed(self, quiz_id: str, student_id: str) -> Optional[models.Attempt]:
        """Earliest submitted completed attempt of a student on a quiz."""
        stmt = (
            select(models.Attempt)
            .where(
                models.Attempt.quiz_id == quiz_id,
                models.Attempt.student_id == student_id,
                models.Attempt.is_completed == True,  # noqa: E712
            )
            .order_by(models.Attempt.submitted_at)
        )
        return self.session.exec(stmt).first()

    def has_completed(self, quiz_id: str, student_id: str) -> bool:
        return self.first_completed(quiz_id, student_id) is not None

    def list_scoped(
        self,
        student_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        quiz_id: Optional[str] = None,
        is_completed: Optional[bool] = None,
    ) -> List[Tuple[models.Attempt, models.Quiz, models.User]]:
        stmt = (
            select(models.Attempt, models.Quiz, models.User)
            .join(models.Quiz, models.Attempt.quiz_id == models.Quiz.id)
            .join(models.User, models.Attempt.student_id == models.User.id)
        )
        if student_id:
            stmt = stmt.where(models.Attempt.student_id == student_id)
        if teacher_id:
            stmt = stmt.where(models.Quiz.teacher_id == teacher_id)
        if quiz_id:
            stmt = stmt.where(models.Attempt.quiz_id == quiz_id)
        if is_completed is not None:
            stmt = stmt.where(models.Attempt.is_completed == is_completed)
        return self.session.exec(stmt.order_by(models.Attempt.started_at.desc())).all()

    def completed_in_class(self, student_id: str, class_id: str) -> List[Tuple[models.Attempt, models.Quiz]]:
        """Completed attempts of a student on quizzes of a class, newest first."""
        stmt = (
            select(models.Attempt, models.Quiz)
            .join(models.Quiz, models.Attempt.quiz_id == models.Quiz.id)
            .where(
                models.Attempt.student_id == student_id,
                models.Quiz.class_id == class_id,
                models.Attempt.is_completed == True,  # noqa: E712
            )
            .order_by(models.Attempt.submitted_at.desc())
        )
        return self.session.exec(stmt).all()

    def class_total_score(self, student_id: str, class_id: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(models.Attempt.score), 0))
            .join(models.Quiz, models.Attempt.quiz_id == models.Quiz.id)
            .where(
                models.Attempt.student_id == student_id,
                models.Quiz.class_id == class_id,
                models.Attempt.is_completed == True,  # noqa: E712
            )
        )
        return int(self.session.exec(stmt).one())


class AnswerRepository(_Repository):
    """Query helpers for graded `Answer` records."""

    def get(self, answer_id: str) -> Optional[models.Answer]:
        return self.session.get(models.Answer, answer_id)

    def add_all(self, answers: Sequence[models.Answer]) -> None:
        self.session.add_all(list(answers))
        self.session.flush()

    def list_for_attempt(self, attempt_id: str) -> List[models.Answer]:
        stmt = select(models.Answer).where(models.Answer.attempt_id == attempt_id)
        return self.session.exec(stmt).all()

    def sum_points(self, attempt_id: str) -> int:
        stmt = select(func.coalesce(func.sum(models.Answer.points_earned), 0)).where(
            models.Answer.attempt_id == attempt_id
        )
        return int(self.session.exec(stmt).one())

    def list_scoped(
        self,
        student_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        question_id: Optional[str] = None,
    ) -> List[models.Answer]:
        stmt = (
            select(models.Answer)
            .join(models.Attempt, models.Answer.attempt_id == models.Attempt.id)
            .join(models.Quiz, models.Attempt.quiz_id == models.Quiz.id)
        )
        if student_id:
            stmt = stmt.where(models.Attempt.student_id == student_id)
        if teacher_id:
            stmt = stmt.where(models.Quiz.teacher_id == teacher_id)
        if attempt_id:
            stmt = stmt.where(models.Answer.attempt_id == attempt_id)
        if question_id:
            stmt = stmt.where(models.Answer.question_id == question_id)
        return self.session.exec(stmt).all()


class LeaderboardRepository(_Repository):
    """Per-class leaderboard entries."""

    def get_entry(self, class_id: str, student_id: str) -> Optional[models.LeaderboardEntry]:
        stmt = select(models.LeaderboardEntry).where(
            models.LeaderboardEntry.class_id == class_id,
            models.LeaderboardEntry.student_id == student_id,
        )
        return self.session.exec(stmt).first()

    def upsert_total(self, class_id: str, student_id: str, total_score: int, now: datetime) -> models.LeaderboardEntry:
        """Create or update the (class, student) entry with `total_score`."""
        entry = self.get_entry(class_id, student_id)
        if entry is None:
            entry = models.LeaderboardEntry(class_id=class_id, student_id=student_id)
        entry.total_score = total_score
        entry.updated_at = now
        return self.add(entry)

    def list_for_class(self, class_id: str) -> List[models.LeaderboardEntry]:
        """Entries in ranking order: score desc, earlier update, student id."""
        stmt = (
            select(models.LeaderboardEntry)
            .where(models.LeaderboardEntry.class_id == class_id)
            .order_by(
                models.LeaderboardEntry.total_score.desc(),
                models.LeaderboardEntry.updated_at,
                models.LeaderboardEntry.student_id,
            )
        )
        return self.session.exec(stmt).all()

    def ranked_with_names(self, class_id: str, limit: Optional[int] = None) -> List[Tuple[models.LeaderboardEntry, models.User]]:
        stmt = (
            select(models.LeaderboardEntry, models.User)
            .join(models.User, models.LeaderboardEntry.student_id == models.User.id)
            .where(models.LeaderboardEntry.class_id == class_id)
            .order_by(models.LeaderboardEntry.student_rank, models.LeaderboardEntry.student_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()


class ConnectionRepository(_Repository):
    """Student-to-student connection requests."""

    def get(self, connection_id: str) -> Optional[models.Connection]:
        return self.session.get(models.Connection, connection_id)

    def between(self, a: str, b: str) -> Optional[models.Connection]:
        """Connection between two students in either direction."""
        stmt = select(models.Connection).where(
            or_(
                and_(models.Connection.student_id == a, models.Connection.connected_student_id == b),
                and_(models.Connection.student_id == b, models.Connection.connected_student_id == a),
            )
        )
        return self.session.exec(stmt).first()

    def are_connected(self, a: str, b: str) -> bool:
        existing = self.between(a, b)
        return existing is not None and existing.status == models.ConnectionStatus.ACCEPTED.value

    def list_sent(self, student_id: str) -> List[Tuple[models.Connection, models.User]]:
        stmt = (
            select(models.Connection, models.User)
            .join(models.User, models.Connection.connected_student_id == models.User.id)
            .where(models.Connection.student_id == student_id)
        )
        return self.session.exec(stmt).all()

    def list_received(self, student_id: str, status: str) -> List[Tuple[models.Connection, models.User]]:
        stmt = (
            select(models.Connection, models.User)
            .join(models.User, models.Connection.student_id == models.User.id)
            .where(models.Connection.connected_student_id == student_id, models.Connection.status == status)
        )
        return self.session.exec(stmt).all()


class ChallengeRepository(_Repository):
    """Quiz challenges between connected students."""

    def get(self, challenge_id: str) -> Optional[models.Challenge]:
        return self.session.get(models.Challenge, challenge_id)

    def pending_between(self, a: str, b: str, quiz_id: str) -> Optional[models.Challenge]:
        stmt = select(models.Challenge).where(
            or_(
                and_(models.Challenge.challenger_id == a, models.Challenge.opponent_id == b),
                and_(models.Challenge.challenger_id == b, models.Challenge.opponent_id == a),
            ),
            models.Challenge.quiz_id == quiz_id,
            models.Challenge.status == models.ChallengeStatus.PENDING.value,
        )
        return self.session.exec(stmt).first()

    def accepted_for(self, quiz_id: str, student_id: str) -> List[models.Challenge]:
        stmt = (
            select(models.Challenge)
            .where(
                models.Challenge.quiz_id == quiz_id,
                or_(models.Challenge.challenger_id == student_id, models.Challenge.opponent_id == student_id),
                models.Challenge.status == models.ChallengeStatus.ACCEPTED.value,
            )
            .order_by(models.Challenge.created_at)
        )
        return self.session.exec(stmt).all()

    def list_for(self, student_id: str) -> List[Tuple[models.Challenge, models.Quiz, models.User, models.User]]:
        challenger = aliased(models.User)
        opponent = aliased(models.User)
        stmt = (
            select(models.Challenge, models.Quiz, challenger, opponent)
            .join(models.Quiz, models.Challenge.quiz_id == models.Quiz.id)
            .join(challenger, models.Challenge.challenger_id == challenger.id)
            .join(opponent, models.Challenge.opponent_id == opponent.id)
            .where(or_(models.Challenge.challenger_id == student_id, models.Challenge.opponent_id == student_id))
            .order_by(models.Challenge.created_at.desc())
        )
        return self.session.exec(stmt).all()


class NotificationRepository(_Repository):
    """Persisted per-user notifications."""

    def get_owned(self, notification_id: str, user_id: str) -> Optional[models.Notification]:
        stmt = select(models.Notification).where(
            models.Notification.id == notification_id,
            models.Notification.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: str, limit: int, offset: int) -> List[models.Notification]:
        stmt = (
            select(models.Notification)
            .where(models.Notification.user_id == user_id)
            .order_by(models.Notification.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: str, unread_only: bool = False) -> int:
        stmt = select(func.count(models.Notification.id)).where(models.Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(models.Notification.is_read == False)  # noqa: E712
        return self.session.exec(stmt).one()

    def unread_for_user(self, user_id: str) -> List[models.Notification]:
        stmt = select(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read == False,  # noqa: E712
        )
        return self.session.exec(stmt).all()
