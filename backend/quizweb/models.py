"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Primary keys are UUID4 strings. Timestamps are timezone-aware UTC
datetimes on both sides of the database (`UTCDateTime`).
Foreign keys cascade on delete unless noted on the field.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """`DateTime(timezone=True)` that always hands back aware UTC values.

    SQLite drops the offset on storage, so results are re-tagged as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class User(SQLModel, table=True):
    """A registered student or teacher.

    Fields:
    - `email`: unique login name, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: one of `UserRole`
    """
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    display_name: str
    role: str = Field(index=True)
    avatar: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ClassRoom(SQLModel, table=True):
    """A class owned by a teacher. Students join it with `class_code`."""
    __tablename__ = "classes"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    description: Optional[str] = None
    class_code: str = Field(index=True, unique=True)
    teacher_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Enrollment(SQLModel, table=True):
    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_enrollment_class_student"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    class_id: str = Field(foreign_key="classes.id", ondelete="CASCADE", index=True)
    student_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    enrolled_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Quiz(SQLModel, table=True):
    """A quiz authored by a teacher, optionally assigned to a class.

    `time_limit` is in minutes. `total_points` mirrors the sum of the
    question points and is recomputed whenever questions change.
    """
    __tablename__ = "quizzes"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    type: str = QuestionType.MULTIPLE_CHOICE.value
    class_id: Optional[str] = Field(default=None, foreign_key="classes.id", ondelete="SET NULL", index=True)
    teacher_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    time_limit: Optional[int] = None
    total_points: int = 0
    start_time: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    end_time: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    is_published: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Question(SQLModel, table=True):
    __tablename__ = "quiz_questions"

    id: str = Field(default_factory=new_id, primary_key=True)
    quiz_id: str = Field(foreign_key="quizzes.id", ondelete="CASCADE", index=True)
    question_text: str
    question_type: str
    points: int = 1
    order_index: int = 0
    options: Optional[List[Any]] = Field(default=None, sa_column=Column(JSON))
    correct_answer: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Attempt(SQLModel, table=True):
    """One student's run through a quiz.

    The row is created incomplete when the student starts and is graded
    exactly once on submission.
    """
    __tablename__ = "quiz_attempts"

    id: str = Field(default_factory=new_id, primary_key=True)
    quiz_id: str = Field(foreign_key="quizzes.id", ondelete="CASCADE", index=True)
    student_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    started_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    submitted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    score: Optional[int] = None
    total_points: Optional[int] = None
    time_taken: Optional[int] = None
    is_completed: bool = False


class Answer(SQLModel, table=True):
    """A single graded answer inside an `Attempt`."""
    __tablename__ = "quiz_answers"

    id: str = Field(default_factory=new_id, primary_key=True)
    attempt_id: str = Field(foreign_key="quiz_attempts.id", ondelete="CASCADE", index=True)
    question_id: str = Field(foreign_key="quiz_questions.id", ondelete="CASCADE", index=True)
    answer: str
    is_correct: bool = False
    points_earned: int = 0


class LeaderboardEntry(SQLModel, table=True):
    __tablename__ = "leaderboards"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_leaderboard_class_student"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    class_id: str = Field(foreign_key="classes.id", ondelete="CASCADE", index=True)
    student_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    total_score: int = 0
    student_rank: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Challenge(SQLModel, table=True):
    """A head-to-head quiz challenge between two connected students."""
    __tablename__ = "challenges"

    id: str = Field(default_factory=new_id, primary_key=True)
    challenger_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    opponent_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    quiz_id: str = Field(foreign_key="quizzes.id", ondelete="CASCADE", index=True)
    status: str = ChallengeStatus.PENDING.value
    winner_id: Optional[str] = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Connection(SQLModel, table=True):
    """A connection request from `student_id` to `connected_student_id`."""
    __tablename__ = "student_connections"
    __table_args__ = (UniqueConstraint("student_id", "connected_student_id", name="uq_connection_pair"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    student_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    connected_student_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    status: str = ConnectionStatus.PENDING.value
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    type: str
    message: str
    link: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)
