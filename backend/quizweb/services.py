"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
notifications and auxiliary logic. Services are intentionally thin: they
perform validation, execute domain logic and persist aggregates via
repositories. Every service method that writes commits its own
transaction; errors are raised as `ServiceError` subclasses.
"""

import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import AuthenticationFailed, Conflict, NotFound, PermissionDenied, ValidationFailed
from .utils.realtime import get_hub, make_event

logger = logging.getLogger("quizweb.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ROLES = {r.value for r in models.UserRole}
QUESTION_TYPES = {t.value for t in models.QuestionType}
CLASS_CODE_ALPHABET = string.ascii_uppercase + string.digits
CLASS_CODE_LENGTH = 8
LEADERBOARD_BROADCAST_SIZE = 10


def public_user(user: models.User) -> dict:
    """Return the user as a dict without the password hash."""
    return user.model_dump(exclude={"password_hash"})


def percentage(score: Optional[int], total: Optional[int]) -> float:
    if not total:
        return 0.0
    return round((score or 0) * 100.0 / total, 2)


def quiz_status(quiz: models.Quiz, now: Optional[datetime] = None) -> str:
    """Compute the display status of a quiz at `now` (UTC).

    Unpublished quizzes are drafts. A published quiz is upcoming before its
    start time, closed after its end time and active otherwise.
    """
    if not quiz.is_published:
        return "Draft"
    now = models.as_utc(now) or models.utcnow()
    start, end = models.as_utc(quiz.start_time), models.as_utc(quiz.end_time)
    if start and now < start:
        return "Upcoming"
    if end and start and now > end:
        return "Closed"
    return "Active"


def grade_answer(question_type: str, submitted: Optional[str], correct: Optional[str]) -> bool:
    """Return True when `submitted` matches the stored answer.

    Multiple-choice answers must match exactly after trimming; true/false
    and short answers are compared case-insensitively.
    """
    given = (submitted or "").strip()
    expected = (correct or "").strip()
    if question_type == models.QuestionType.MULTIPLE_CHOICE.value:
        return given == expected
    return given.lower() == expected.lower()


def question_row(question: models.Question, reveal_answer: bool = True) -> dict:
    row = question.model_dump()
    row["options"] = list(question.options or [])
    if not reveal_answer:
        row.pop("correct_answer", None)
    return row


class NotificationService:
    """Persist notifications and fan them out over the real-time hub.

    `notify` only stages the row and the event; callers commit and then call
    `publish` so nothing is pushed for a rolled-back transaction.
    """
    def __init__(self, session: Session, hub=None):
        self.session = session
        self.repo = repositories.NotificationRepository(session)
        self.hub = hub or get_hub()
        self._outbox: List[tuple] = []

    def notify(self, user_id: str, type_: str, message: str, link: Optional[str] = None, **extra) -> models.Notification:
        note = self.repo.add(models.Notification(user_id=user_id, type=type_, message=message, link=link))
        event = make_event(type_, notification_id=note.id, message=message, link=link, **extra)
        self._outbox.append((user_id, event))
        return note

    def publish(self) -> int:
        """Push staged events; failures are logged and skipped."""
        sent = 0
        outbox, self._outbox = self._outbox, []
        for user_id, event in outbox:
            try:
                self.hub.push(user_id, event)
                sent += 1
            except Exception:
                logger.exception("notification_push_failed user_id=%s type=%s", user_id, event.get("type"))
        return sent

    def list_for(self, user: models.User, limit: int = 50, offset: int = 0) -> dict:
        rows = self.repo.list_for_user(user.id, limit, offset)
        return {
            "notifications": [n.model_dump() for n in rows],
            "unread_count": self.repo.count_for_user(user.id, unread_only=True),
            "total_count": self.repo.count_for_user(user.id),
        }

    def mark_read(self, user: models.User, notification_id: str) -> models.Notification:
        note = self.repo.get_owned(notification_id, user.id)
        if note is None:
            raise NotFound("Notification not found")
        note.is_read = True
        self.repo.add(note)
        self.session.commit()
        self.session.refresh(note)
        return note

    def mark_all_read(self, user: models.User) -> int:
        unread = self.repo.unread_for_user(user.id)
        for note in unread:
            note.is_read = True
            self.session.add(note)
        self.session.commit()
        return len(unread)

    def delete(self, user: models.User, notification_id: str) -> None:
        note = self.repo.get_owned(notification_id, user.id)
        if note is None:
            raise NotFound("Notification not found")
        self.repo.delete(note)
        self.session.commit()

    def drain_realtime(self, user: models.User) -> List[dict]:
        return self.hub.drain(user.id)


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, role: str, display_name: str) -> models.User:
        """Validate the signup payload and create a user with a hashed password.

        Returns the persisted `User` instance.
        """
        email = (email or "").strip().lower()
        if len(email) > 255 or not EMAIL_RE.match(email):
            raise ValidationFailed("Invalid email address")
        if not 6 <= len(password or "") <= 128:
            raise ValidationFailed("Password must be between 6 and 128 characters")
        name = (display_name or "").strip()
        if not 2 <= len(name) <= 255:
            raise ValidationFailed("Display name must be between 2 and 255 characters")
        if role not in ROLES:
            raise ValidationFailed("Role must be student or teacher")
        if self.user_repo.get_by_email(email):
            raise Conflict("Email already registered")
        user = models.User(email=email, password_hash=PWD_CTX.hash(password), display_name=name, role=role)
        try:
            self.user_repo.add(user)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict("Email already registered")
        self.session.refresh(user)
        logger.info("user_registered user_id=%s role=%s", user.id, user.role)
        return user

    def authenticate(self, email: str, password: str, role: str):
        """Verify credentials for the given login portal.

        Returns `(token, user)`. Unknown emails and wrong passwords share one
        message; a role mismatch names the role the account is registered as.
        """
        user = self.user_repo.get_by_email(email or "")
        if not user or not PWD_CTX.verify(password or "", user.password_hash):
            raise AuthenticationFailed("Invalid email or password")
        if user.role != role:
            raise PermissionDenied(
                f"This account is registered as a {user.role}. Please use the {user.role} login."
            )
        return self.issue_token(user), user

    @staticmethod
    def issue_token(user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "display_name": user.display_name,
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class UserService:
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def list(self, role: Optional[str] = None) -> List[dict]:
        if role and role not in ROLES:
            raise ValidationFailed("Role must be student or teacher")
        return [public_user(u) for u in self.user_repo.list(role)]

    def get(self, viewer: models.User, user_id: str) -> dict:
        """Return a public profile; students may only look at other students."""
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        if viewer.role == models.UserRole.STUDENT.value and user.role != models.UserRole.STUDENT.value:
            raise PermissionDenied("Students can only view student profiles")
        return public_user(user)

    def update(self, actor: models.User, user_id: str, fields: dict) -> dict:
        if actor.id != user_id:
            raise PermissionDenied("You can only update your own profile")
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFound("User not found")
        if not fields:
            raise ValidationFailed("No fields to update")
        if "display_name" in fields:
            name = (fields["display_name"] or "").strip()
            if not 2 <= len(name) <= 255:
                raise ValidationFailed("Display name must be between 2 and 255 characters")
            fields["display_name"] = name
        for key, value in fields.items():
            setattr(user, key, value)
        user.updated_at = models.utcnow()
        self.user_repo.add(user)
        self.session.commit()
        self.session.refresh(user)
        return public_user(user)


class ClassService:
    def __init__(self, session: Session):
        self.session = session
        self.class_repo = repositories.ClassRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def _row(self, cls: models.ClassRoom, teacher: models.User) -> dict:
        row = cls.model_dump()
        row["teacher_name"] = teacher.display_name
        row["student_count"] = self.enrollment_repo.count_for_class(cls.id)
        return row

    def list_for(self, user: models.User) -> List[dict]:
        if user.role == models.UserRole.TEACHER.value:
            rows = self.class_repo.list_for_teacher(user.id)
        else:
            rows = self.class_repo.list_for_student(user.id)
        return [self._row(cls, teacher) for cls, teacher in rows]

    def get_owned(self, teacher: models.User, class_id: str) -> models.ClassRoom:
        cls = self.class_repo.get_owned(class_id, teacher.id)
        if cls is None:
            raise NotFound("Class not found")
        return cls

    def _generate_code(self) -> str:
        while True:
            code = "".join(secrets.choice(CLASS_CODE_ALPHABET) for _ in range(CLASS_CODE_LENGTH))
            if self.class_repo.get_by_code(code) is None:
                return code

    def create(self, teacher: models.User, name: Optional[str], description: Optional[str] = None) -> dict:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Class name is required")
        cls = self.class_repo.add(models.ClassRoom(
            name=name,
            description=description,
            class_code=self._generate_code(),
            teacher_id=teacher.id,
        ))
        self.session.commit()
        self.session.refresh(cls)
        logger.info("class_created class_id=%s teacher_id=%s", cls.id, teacher.id)
        return self._row(cls, teacher)

    def update(self, teacher: models.User, class_id: str, name: Optional[str], description: Optional[str] = None) -> dict:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Class name is required")
        cls = self.get_owned(teacher, class_id)
        cls.name = name
        cls.description = description
        cls.updated_at = models.utcnow()
        self.class_repo.add(cls)
        self.session.commit()
        self.session.refresh(cls)
        return self._row(cls, teacher)

    def delete(self, teacher: models.User, class_id: str) -> None:
        cls = self.get_owned(teacher, class_id)
        self.class_repo.delete(cls)
        self.session.commit()
        logger.info("class_deleted class_id=%s", class_id)


class LeaderboardService:
    """Maintain per-class leaderboard totals and ranks."""
    def __init__(self, session: Session):
        self.session = session
        self.board_repo = repositories.LeaderboardRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)
        self.class_repo = repositories.ClassRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def recalculate(self, class_id: str, student_id: str, now: Optional[datetime] = None) -> models.LeaderboardEntry:
        """Refresh the student's class total and re-rank the whole class."""
        total = self.attempt_repo.class_total_score(student_id, class_id)
        entry = self.board_repo.upsert_total(class_id, student_id, total, now or models.utcnow())
        self.rerank(class_id)
        return entry

    def refresh_class(self, class_id: str, student_ids=()) -> None:
        """Recompute every total in the class, plus `student_ids`, then re-rank."""
        now = models.utcnow()
        ids = {entry.student_id for entry in self.board_repo.list_for_class(class_id)}
        ids.update(student_ids)
        for student_id in ids:
            self.board_repo.upsert_total(class_id, student_id, self.attempt_repo.class_total_score(student_id, class_id), now)
        self.rerank(class_id)

    def rerank(self, class_id: str) -> None:
        for rank, entry in enumerate(self.board_repo.list_for_class(class_id), start=1):
            entry.student_rank = rank
            self.session.add(entry)
        self.session.flush()

    def remove(self, class_id: str, student_id: str) -> None:
        entry = self.board_repo.get_entry(class_id, student_id)
        if entry is not None:
            self.board_repo.delete(entry)
            self.rerank(class_id)

    def top(self, class_id: str, limit: int = LEADERBOARD_BROADCAST_SIZE) -> List[dict]:
        return [
            {
                "student_id": entry.student_id,
                "display_name": user.display_name,
                "avatar": user.avatar,
                "total_score": entry.total_score,
                "rank": entry.student_rank,
            }
            for entry, user in self.board_repo.ranked_with_names(class_id, limit=limit)
        ]

    def broadcast(self, class_id: str, updated_by: str) -> None:
        """Send the class top list to its teacher and students; never raises."""
        try:
            cls = self.class_repo.get(class_id)
            if cls is None:
                return
            recipients = [cls.teacher_id] + self.enrollment_repo.student_ids(class_id)
            event = make_event("leaderboard_update", class_id=class_id, leaderboard=self.top(class_id), updated_by=updated_by)
            get_hub().push_many(recipients, event)
        except Exception:
            logger.exception("leaderboard_broadcast_failed class_id=%s", class_id)


class EnrollmentService:
    def __init__(self, session: Session):
        self.session = session
        self.class_repo = repositories.ClassRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def list_for(self, user: models.User, class_id: Optional[str] = None) -> List[dict]:
        if user.role == models.UserRole.TEACHER.value:
            rows = self.enrollment_repo.list_scoped(teacher_id=user.id, class_id=class_id)
        else:
            rows = self.enrollment_repo.list_scoped(student_id=user.id, class_id=class_id)
        out = []
        for enrollment, cls, teacher, student in rows:
            row = enrollment.model_dump()
            row.update({
                "class_name": cls.name,
                "class_code": cls.class_code,
                "teacher_name": teacher.display_name,
                "student_name": student.display_name,
                "student_email": student.email,
            })
            out.append(row)
        return out

    def students(self, teacher: models.User, class_id: str) -> dict:
        """Students enrolled in a class the teacher owns."""
        cls = self.class_repo.get(class_id)
        if cls is None or cls.teacher_id != teacher.id:
            raise PermissionDenied("You can only view enrollments of your own classes")
        rows = []
        for enrollment, student in self.enrollment_repo.list_students(class_id):
            rows.append({
                "enrollment_id": enrollment.id,
                "enrolled_at": enrollment.enrolled_at,
                "student_id": student.id,
                "display_name": student.display_name,
                "email": student.email,
                "avatar": student.avatar,
            })
        return {"enrollments": rows, "total_students": len(rows)}

    def enroll(self, student: models.User, class_id: Optional[str]) -> models.Enrollment:
        if not class_id:
            raise ValidationFailed("class_id is required")
        cls = self.class_repo.get(class_id)
        if cls is None:
            raise NotFound("Class not found")
        return self._enroll(student, cls)

    def enroll_by_code(self, student: models.User, class_code: Optional[str]) -> models.Enrollment:
        if not (class_code or "").strip():
            raise ValidationFailed("class_code is required")
        cls = self.class_repo.get_by_code(class_code)
        if cls is None:
            raise NotFound("No class found with this code")
        return self._enroll(student, cls)

    def _enroll(self, student: models.User, cls: models.ClassRoom) -> models.Enrollment:
        if self.enrollment_repo.is_enrolled(cls.id, student.id):
            raise Conflict("Already enrolled in this class")
        notifier = NotificationService(self.session)
        try:
            enrollment = self.enrollment_repo.add(models.Enrollment(class_id=cls.id, student_id=student.id))
            notifier.notify(
                cls.teacher_id,
                "student_enrolled",
                f"{student.display_name} joined {cls.name}",
                link=f"/classes/{cls.id}",
                class_id=cls.id,
                student_id=student.id,
            )
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict("Already enrolled in this class")
        self.session.refresh(enrollment)
        notifier.publish()
        logger.info("student_enrolled class_id=%s student_id=%s", cls.id, student.id)
        return enrollment

    def remove(self, user: models.User, enrollment_id: str) -> None:
        """Delete an enrollment as the enrolled student or the class teacher."""
        enrollment = self.enrollment_repo.get(enrollment_id)
        if enrollment is None:
            raise NotFound("Enrollment not found")
        cls = self.class_repo.get(enrollment.class_id)
        if user.id != enrollment.student_id and (cls is None or cls.teacher_id != user.id):
            raise PermissionDenied("You cannot remove this enrollment")
        self._drop(enrollment)

    def leave(self, student: models.User, class_id: str) -> None:
        enrollment = self.enrollment_repo.get_for(class_id, student.id)
        if enrollment is None:
            raise NotFound("You are not enrolled in this class")
        self._drop(enrollment)

    def _drop(self, enrollment: models.Enrollment) -> None:
        class_id, student_id = enrollment.class_id, enrollment.student_id
        self.enrollment_repo.delete(enrollment)
        LeaderboardService(self.session).remove(class_id, student_id)
        self.session.commit()
        logger.info("enrollment_removed class_id=%s student_id=%s", class_id, student_id)


class QuizService:
    """Quiz authoring and access rules."""
    NON_NULLABLE = ("title", "type", "is_published", "total_points")

    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.class_repo = repositories.ClassRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.question_repo = repositories.QuestionRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def _row(self, quiz: models.Quiz, user: models.User, teacher_name: Optional[str], class_name: Optional[str], now: datetime) -> dict:
        status = quiz_status(quiz, now)
        row = quiz.model_dump()
        row.update({
            "teacher_name": teacher_name,
            "class_name": class_name,
            "status": status,
            "can_take": status == "Active" or (user.role == models.UserRole.TEACHER.value and quiz.is_published),
        })
        return row

    def list_for(self, user: models.User) -> List[dict]:
        now = models.utcnow()
        if user.role == models.UserRole.TEACHER.value:
            rows = self.quiz_repo.list_for_teacher(user.id)
        else:
            rows = self.quiz_repo.list_for_student(user.id)
        return [self._row(q, user, t.display_name, c.name if c else None, now) for q, t, c in rows]

    def get_owned(self, teacher: models.User, quiz_id: str) -> models.Quiz:
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        if quiz.teacher_id != teacher.id:
            raise PermissionDenied("You do not own this quiz")
        return quiz

    def check_access(self, user: models.User, quiz_id: str) -> models.Quiz:
        """Return the quiz if `user` may view it, else raise."""
        if user.role == models.UserRole.TEACHER.value:
            return self.get_owned(user, quiz_id)
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        if not quiz.is_published:
            raise PermissionDenied("Quiz is not published")
        if not quiz.class_id:
            raise PermissionDenied("Quiz is not assigned to a class")
        if not self.enrollment_repo.is_enrolled(quiz.class_id, user.id):
            raise PermissionDenied("You are not enrolled in this quiz's class")
        return quiz

    def get_for(self, user: models.User, quiz_id: str) -> dict:
        quiz = self.check_access(user, quiz_id)
        teacher = self.user_repo.get(quiz.teacher_id)
        cls = self.class_repo.get(quiz.class_id) if quiz.class_id else None
        row = self._row(quiz, user, teacher.display_name if teacher else None, cls.name if cls else None, models.utcnow())
        row["question_count"] = len(self.question_repo.list_for_quiz(quiz.id))
        return row

    def questions_for(self, user: models.User, quiz_id: str) -> List[dict]:
        """Ordered questions; students see answers only after finishing."""
        quiz = self.check_access(user, quiz_id)
        reveal = True
        if user.role == models.UserRole.STUDENT.value:
            if quiz.start_time and models.utcnow() < models.as_utc(quiz.start_time):
                raise PermissionDenied("Quiz has not started yet")
            reveal = self.attempt_repo.has_completed(quiz.id, user.id)
        return [question_row(q, reveal_answer=reveal) for q in self.question_repo.list_for_quiz(quiz.id)]

    def _clean(self, teacher: models.User, data: dict, creating: bool) -> dict:
        for key in self.NON_NULLABLE:
            if key in data and data[key] is None:
                data.pop(key)
        if "title" in data or creating:
            title = (data.get("title") or "").strip()
            if not title:
                raise ValidationFailed("Quiz title is required")
            data["title"] = title
        if data.get("type") is not None and data["type"] not in QUESTION_TYPES:
            raise ValidationFailed(f"Quiz type must be one of: {', '.join(sorted(QUESTION_TYPES))}")
        if data.get("class_id"):
            cls = self.class_repo.get(data["class_id"])
            if cls is None:
                raise NotFound("Class not found")
            if cls.teacher_id != teacher.id:
                raise PermissionDenied("You can only assign quizzes to your own classes")
        for key in ("start_time", "end_time"):
            if key in data:
                data[key] = models.as_utc(data[key])
        return data

    def create(self, teacher: models.User, data: dict) -> dict:
        data = self._clean(teacher, dict(data), creating=True)
        if data.get("start_time") and data.get("end_time") and data["end_time"] < data["start_time"]:
            raise ValidationFailed("end_time must be after start_time")
        notifier = NotificationService(self.session)
        quiz = self.quiz_repo.add(models.Quiz(teacher_id=teacher.id, **data))
        if quiz.is_published and quiz.class_id:
            self._notify_assigned(quiz, notifier)
        self.session.commit()
        self.session.refresh(quiz)
        notifier.publish()
        logger.info("quiz_created quiz_id=%s published=%s", quiz.id, quiz.is_published)
        return self.get_for(teacher, quiz.id)

    def update(self, teacher: models.User, quiz_id: str, data: dict) -> dict:
        if not data:
            raise ValidationFailed("No fields to update")
        quiz = self.get_owned(teacher, quiz_id)
        data = self._clean(teacher, dict(data), creating=False)
        old_class_id = quiz.class_id
        was_published = quiz.is_published
        for key, value in data.items():
            setattr(quiz, key, value)
        if quiz.start_time and quiz.end_time and quiz.end_time < quiz.start_time:
            raise ValidationFailed("end_time must be after start_time")
        quiz.updated_at = models.utcnow()
        notifier = NotificationService(self.session)
        self.quiz_repo.add(quiz)
        if not was_published and quiz.is_published and quiz.class_id:
            self._notify_assigned(quiz, notifier)
        moved = quiz.class_id != old_class_id
        board = LeaderboardService(self.session)
        if moved:
            if old_class_id:
                board.refresh_class(old_class_id)
            if quiz.class_id:
                enrolled = set(self.enrollment_repo.student_ids(quiz.class_id))
                takers = {a.student_id for a, _, _ in self.attempt_repo.list_scoped(quiz_id=quiz.id, is_completed=True)}
                board.refresh_class(quiz.class_id, takers & enrolled)
        self.session.commit()
        self.session.refresh(quiz)
        notifier.publish()
        if moved:
            for class_id in (old_class_id, quiz.class_id):
                if class_id:
                    board.broadcast(class_id, updated_by=teacher.id)
        return self.get_for(teacher, quiz.id)

    def delete(self, teacher: models.User, quiz_id: str) -> None:
        quiz = self.get_owned(teacher, quiz_id)
        class_id = quiz.class_id
        self.quiz_repo.delete(quiz)
        board = LeaderboardService(self.session)
        if class_id:
            board.refresh_class(class_id)
        self.session.commit()
        if class_id:
            board.broadcast(class_id, updated_by=teacher.id)
        logger.info("quiz_deleted quiz_id=%s", quiz_id)

    def _notify_assigned(self, quiz: models.Quiz, notifier: NotificationService) -> None:
        for student_id in self.enrollment_repo.student_ids(quiz.class_id):
            notifier.notify(
                student_id,
                "quiz_assigned",
                f"New quiz assigned: {quiz.title}",
                link=f"/quizzes/{quiz.id}",
                quiz_id=quiz.id,
                class_id=quiz.class_id,
            )


class QuestionService:
    """Question CRUD; keeps `Quiz.total_points` equal to the question sum."""
    def __init__(self, session: Session):
        self.session = session
        self.question_repo = repositories.QuestionRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)

    def list_for(self, user: models.User, quiz_id: str) -> List[dict]:
        return QuizService(self.session).questions_for(user, quiz_id)

    def _owned_quiz(self, teacher: models.User, quiz_id: str) -> models.Quiz:
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None or quiz.teacher_id != teacher.id:
            raise NotFound("Quiz not found or access denied")
        return quiz

    def _owned_question(self, teacher: models.User, question_id: str):
        question = self.question_repo.get(question_id)
        if question is None:
            raise NotFound("Question not found")
        quiz = self.quiz_repo.get(question.quiz_id)
        if quiz is None or quiz.teacher_id != teacher.id:
            raise PermissionDenied("You do not own this question's quiz")
        return question, quiz

    def create(self, teacher: models.User, quiz_id: Optional[str], data: dict, append: bool = False) -> dict:
        """Create a question; `append` ignores any client order index."""
        text = (data.get("question_text") or "").strip()
        qtype = data.get("question_type")
        correct = data.get("correct_answer")
        if not quiz_id or not text or not qtype or correct is None or not str(correct).strip():
            raise ValidationFailed("quiz_id, question_text, question_type and correct_answer are required")
        if qtype not in QUESTION_TYPES:
            raise ValidationFailed(f"question_type must be one of: {', '.join(sorted(QUESTION_TYPES))}")
        quiz = self._owned_quiz(teacher, quiz_id)
        order_index = data.get("order_index")
        if append or order_index is None:
            order_index = self.question_repo.next_order_index(quiz.id)
        points = data.get("points")
        question = self.question_repo.add(models.Question(
            quiz_id=quiz.id,
            question_text=text,
            question_type=qtype,
            points=1 if points is None else points,
            order_index=order_index,
            options=list(data.get("options") or []),
            correct_answer=str(correct),
        ))
        self._recompute_total(quiz)
        self.session.commit()
        self.session.refresh(question)
        return question_row(question)

    def update(self, teacher: models.User, question_id: str, data: dict) -> dict:
        data = {k: v for k, v in data.items() if k != "quiz_id"}
        if not data:
            raise ValidationFailed("No fields to update")
        question, quiz = self._owned_question(teacher, question_id)
        if "question_type" in data and data["question_type"] not in QUESTION_TYPES:
            raise ValidationFailed(f"question_type must be one of: {', '.join(sorted(QUESTION_TYPES))}")
        for key in ("question_text", "correct_answer", "question_type", "points", "order_index"):
            if key in data and data[key] is None:
                raise ValidationFailed(f"{key} cannot be null")
        if "question_text" in data:
            data["question_text"] = data["question_text"].strip()
            if not data["question_text"]:
                raise ValidationFailed("question_text cannot be empty")
        if "options" in data:
            data["options"] = list(data["options"] or [])
        for key, value in data.items():
            setattr(question, key, value)
        self.question_repo.add(question)
        self._recompute_total(quiz)
        self.session.commit()
        self.session.refresh(question)
        return question_row(question)

    def delete(self, teacher: models.User, question_id: str) -> None:
        question, quiz = self._owned_question(teacher, question_id)
        self.question_repo.delete(question)
        self._recompute_total(quiz)
        self.session.commit()

    def _recompute_total(self, quiz: models.Quiz) -> None:
        quiz.total_points = self.question_repo.sum_points(quiz.id)
        quiz.updated_at = models.utcnow()
        self.quiz_repo.add(quiz)


class ChallengeService:
    """Head-to-head challenges between connected students."""
    def __init__(self, session: Session, notifier: Optional[NotificationService] = None):
        self.session = session
        self.notifier = notifier or NotificationService(session)
        self.challenge_repo = repositories.ChallengeRepository(session)
        self.connection_repo = repositories.ConnectionRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def list_for(self, student: models.User) -> List[dict]:
        out = []
        for challenge, quiz, challenger, opponent in self.challenge_repo.list_for(student.id):
            row = challenge.model_dump()
            row.update({
                "quiz_title": quiz.title,
                "challenger_name": challenger.display_name,
                "opponent_name": opponent.display_name,
                "direction": "sent" if challenge.challenger_id == student.id else "received",
            })
            out.append(row)
        return out

    def create(self, student: models.User, opponent_id: Optional[str], quiz_id: Optional[str]) -> models.Challenge:
        if not opponent_id or not quiz_id:
            raise ValidationFailed("opponent_id and quiz_id are required")
        if opponent_id == student.id:
            raise ValidationFailed("You cannot challenge yourself")
        opponent = self.user_repo.get(opponent_id)
        if opponent is None or opponent.role != models.UserRole.STUDENT.value:
            raise NotFound("Opponent not found")
        if not self.connection_repo.are_connected(student.id, opponent_id):
            raise PermissionDenied("You can only challenge connected students")
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None or not quiz.is_published:
            raise NotFound("Quiz not found or not published")
        if self.challenge_repo.pending_between(student.id, opponent_id, quiz_id):
            raise Conflict("A pending challenge for this quiz already exists")
        challenge = self.challenge_repo.add(models.Challenge(
            challenger_id=student.id, opponent_id=opponent_id, quiz_id=quiz_id,
        ))
        self.notifier.notify(
            opponent_id,
            "challenge_received",
            f"{student.display_name} challenged you to {quiz.title}",
            link="/challenges",
            challenge_id=challenge.id,
        )
        self.session.commit()
        self.session.refresh(challenge)
        self.notifier.publish()
        return challenge

    def respond(self, student: models.User, challenge_id: str, status: str) -> models.Challenge:
        if status not in (models.ChallengeStatus.ACCEPTED.value, models.ChallengeStatus.REJECTED.value):
            raise ValidationFailed("Status must be accepted or rejected")
        challenge = self.challenge_repo.get(challenge_id)
        if challenge is None:
            raise NotFound("Challenge not found")
        if challenge.opponent_id != student.id:
            raise PermissionDenied("Only the challenged student can respond")
        if challenge.status != models.ChallengeStatus.PENDING.value:
            raise Conflict(f"Challenge is already {challenge.status}")
        challenge.status = status
        challenge.updated_at = models.utcnow()
        self.challenge_repo.add(challenge)
        quiz = self.quiz_repo.get(challenge.quiz_id)
        accepted = status == models.ChallengeStatus.ACCEPTED.value
        self.notifier.notify(
            challenge.challenger_id,
            "challenge_accepted" if accepted else "challenge_declined",
            f"{student.display_name} {'accepted' if accepted else 'declined'} your challenge on {quiz.title}",
            link="/challenges",
            challenge_id=challenge.id,
        )
        self.session.commit()
        self.session.refresh(challenge)
        self.notifier.publish()
        return challenge

    def resolve_for(self, student: models.User, quiz: models.Quiz, score: int) -> List[models.Challenge]:
        """Complete accepted challenges on `quiz` once both sides have finished.

        Runs inside the caller's transaction; notifications are staged on
        the shared notifier.
        """
        resolved = []
        for challenge in self.challenge_repo.accepted_for(quiz.id, student.id):
            other_id = challenge.opponent_id if challenge.challenger_id == student.id else challenge.challenger_id
            other_attempt = self.attempt_repo.first_completed(quiz.id, other_id)
            if other_attempt is None:
                continue
            other_score = other_attempt.score or 0
            if score > other_score:
                winner_id = student.id
            elif other_score > score:
                winner_id = other_id
            else:
                winner_id = None
            challenge.status = models.ChallengeStatus.COMPLETED.value
            challenge.winner_id = winner_id
            challenge.updated_at = models.utcnow()
            self.challenge_repo.add(challenge)
            for participant in (student.id, other_id):
                if winner_id is None:
                    message = f"Your challenge on {quiz.title} ended in a tie"
                elif winner_id == participant:
                    message = f"You won the challenge on {quiz.title}"
                else:
                    message = f"You lost the challenge on {quiz.title}"
                self.notifier.notify(
                    participant,
                    "challenge_completed",
                    message,
                    link="/challenges",
                    challenge_id=challenge.id,
                    winner_id=winner_id,
                )
            logger.info("challenge_resolved challenge_id=%s winner_id=%s", challenge.id, winner_id)
            resolved.append(challenge)
        return resolved


class ConnectionService:
    def __init__(self, session: Session):
        self.session = session
        self.connection_repo = repositories.ConnectionRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def list_for(self, student: models.User) -> List[dict]:
        """Requests the student sent plus accepted requests they received."""
        out = []
        for conn, other in self.connection_repo.list_sent(student.id):
            out.append(self._row(conn, other, "sent"))
        for conn, other in self.connection_repo.list_received(student.id, models.ConnectionStatus.ACCEPTED.value):
            out.append(self._row(conn, other, "received"))
        return out

    def requests(self, student: models.User) -> List[dict]:
        rows = self.connection_repo.list_received(student.id, models.ConnectionStatus.PENDING.value)
        return [self._row(conn, other, "received") for conn, other in rows]

    @staticmethod
    def _row(conn: models.Connection, other: models.User, direction: str) -> dict:
        row = conn.model_dump()
        row.update({
            "direction": direction,
            "other_student_id": other.id,
            "other_student_name": other.display_name,
            "other_student_avatar": other.avatar,
        })
        return row

    def create(self, student: models.User, target_id: Optional[str]) -> models.Connection:
        if not target_id:
            raise ValidationFailed("connected_student_id is required")
        if target_id == student.id:
            raise ValidationFailed("You cannot connect with yourself")
        target = self.user_repo.get(target_id)
        if target is None or target.role != models.UserRole.STUDENT.value:
            raise NotFound("Student not found")
        existing = self.connection_repo.between(student.id, target_id)
        if existing is not None:
            messages = {
                models.ConnectionStatus.PENDING.value: "A connection request is already pending",
                models.ConnectionStatus.ACCEPTED.value: "You are already connected",
                models.ConnectionStatus.REJECTED.value: "This connection request was rejected",
            }
            raise Conflict(messages.get(existing.status, "Connection already exists"))
        notifier = NotificationService(self.session)
        conn = self.connection_repo.add(models.Connection(student_id=student.id, connected_student_id=target_id))
        notifier.notify(
            target_id,
            "connection_request",
            f"{student.display_name} sent you a connection request",
            link="/connections",
            connection_id=conn.id,
        )
        self.session.commit()
        self.session.refresh(conn)
        notifier.publish()
        return conn

    def respond(self, student: models.User, connection_id: str, status: str) -> models.Connection:
        if status not in (models.ConnectionStatus.ACCEPTED.value, models.ConnectionStatus.REJECTED.value):
            raise ValidationFailed("Status must be accepted or rejected")
        conn = self.connection_repo.get(connection_id)
        if conn is None:
            raise NotFound("Connection not found")
        if conn.connected_student_id != student.id:
            raise PermissionDenied("Only the recipient can respond to this request")
        if conn.status != models.ConnectionStatus.PENDING.value:
            raise Conflict(f"Connection request is already {conn.status}")
        conn.status = status
        conn.updated_at = models.utcnow()
        notifier = NotificationService(self.session)
        self.connection_repo.add(conn)
        if status == models.ConnectionStatus.ACCEPTED.value:
            notifier.notify(
                conn.student_id,
                "connection_accepted",
                f"{student.display_name} accepted your connection request",
                link="/connections",
                connection_id=conn.id,
            )
        self.session.commit()
        self.session.refresh(conn)
        notifier.publish()
        return conn


class AttemptService:
    """Start, inspect and grade quiz attempts."""
    def __init__(self, session: Session):
        self.session = session
        self.attempt_repo = repositories.AttemptRepository(session)
        self.answer_repo = repositories.AnswerRepository(session)
        self.question_repo = repositories.QuestionRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def list_for(self, user: models.User, student_id: Optional[str] = None, quiz_id: Optional[str] = None, is_completed: Optional[bool] = None) -> List[dict]:
        if user.role == models.UserRole.STUDENT.value:
            rows = self.attempt_repo.list_scoped(student_id=user.id, quiz_id=quiz_id, is_completed=is_completed)
        else:
            rows = self.attempt_repo.list_scoped(teacher_id=user.id, student_id=student_id, quiz_id=quiz_id, is_completed=is_completed)
        out = []
        for attempt, quiz, student in rows:
            row = attempt.model_dump()
            row.update({
                "quiz_title": quiz.title,
                "student_name": student.display_name,
                "percentage": percentage(attempt.score, attempt.total_points),
            })
            out.append(row)
        return out

    def start(self, student: models.User, quiz_id: Optional[str]) -> models.Attempt:
        if not quiz_id:
            raise ValidationFailed("quiz_id is required")
        quiz = self.quiz_repo.get(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        if not quiz.is_published:
            raise PermissionDenied("Quiz is not published")
        if not quiz.class_id:
            raise PermissionDenied("Quiz is not assigned to a class")
        if not self.enrollment_repo.is_enrolled(quiz.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this quiz's class")
        if quiz.start_time and models.utcnow() < models.as_utc(quiz.start_time):
            raise PermissionDenied(f"Quiz has not started yet. It starts at {quiz.start_time.isoformat()}")
        if self.attempt_repo.get_active(quiz.id, student.id):
            raise Conflict("You already have an active attempt for this quiz")
        attempt = self.attempt_repo.add(models.Attempt(quiz_id=quiz.id, student_id=student.id))
        self.session.commit()
        self.session.refresh(attempt)
        logger.info("attempt_started attempt_id=%s quiz_id=%s", attempt.id, quiz.id)
        return attempt

    def get_for(self, user: models.User, attempt_id: str) -> dict:
        attempt = self.attempt_repo.get(attempt_id)
        if attempt is None:
            raise NotFound("Attempt not found")
        quiz = self.quiz_repo.get(attempt.quiz_id)
        if attempt.student_id != user.id and (quiz is None or quiz.teacher_id != user.id):
            raise PermissionDenied("You do not have access to this attempt")
        row = attempt.model_dump()
        row["quiz_title"] = quiz.title if quiz else None
        row["percentage"] = percentage(attempt.score, attempt.total_points)
        if attempt.is_completed:
            row["answers"] = [a.model_dump() for a in self.answer_repo.list_for_attempt(attempt.id)]
        return row

    def submit(self, student: models.User, attempt_id: str, answers: Iterable[dict]) -> dict:
        """Grade and complete the student's active attempt.

        Grading, the leaderboard update and challenge resolution share one
        transaction; any failure rolls all of them back. The leaderboard is
        broadcast to the class only after the commit.
        """
        answers = list(answers or [])
        if not answers:
            raise ValidationFailed("answers must be a non-empty list")
        notifier = NotificationService(self.session)
        try:
            attempt = self.attempt_repo.get_active_for_student(attempt_id, student.id)
            if attempt is None:
                raise NotFound("Active attempt not found")
            quiz = self.quiz_repo.get(attempt.quiz_id)
            now = models.utcnow()
            time_taken = max(0, int((now - models.as_utc(attempt.started_at)).total_seconds()))
            questions = {q.id: q for q in self.question_repo.list_for_quiz(quiz.id)}
            total_possible = sum(q.points for q in questions.values())

            graded = []
            score = 0
            for item in answers:
                question = questions.get(item["question_id"])
                if question is None or any(a.question_id == question.id for a in graded):
                    continue
                is_correct = grade_answer(question.question_type, item["answer"], question.correct_answer)
                earned = question.points if is_correct else 0
                score += earned
                graded.append(models.Answer(
                    attempt_id=attempt.id,
                    question_id=question.id,
                    answer=item["answer"],
                    is_correct=is_correct,
                    points_earned=earned,
                ))
            self.answer_repo.add_all(graded)

            attempt.score = score
            attempt.total_points = total_possible
            attempt.time_taken = time_taken
            attempt.submitted_at = now
            attempt.is_completed = True
            self.attempt_repo.add(attempt)

            if quiz.class_id:
                LeaderboardService(self.session).recalculate(quiz.class_id, student.id, now)
            ChallengeService(self.session, notifier).resolve_for(student, quiz, score)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        notifier.publish()
        if quiz.class_id:
            LeaderboardService(self.session).broadcast(quiz.class_id, updated_by=student.id)
        logger.info(
            "attempt_submitted attempt_id=%s quiz_id=%s score=%s/%s",
            attempt_id, quiz.id, score, total_possible,
        )
        return {
            "message": "Quiz submitted successfully",
            "attempt_id": attempt_id,
            "score": score,
            "total_possible_points": total_possible,
            "time_taken": time_taken,
        }


class AnswerService:
    def __init__(self, session: Session):
        self.session = session
        self.answer_repo = repositories.AnswerRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)
        self.question_repo = repositories.QuestionRepository(session)

    def list_for(self, user: models.User, attempt_id: Optional[str] = None, question_id: Optional[str] = None) -> List[dict]:
        if user.role == models.UserRole.STUDENT.value:
            rows = self.answer_repo.list_scoped(student_id=user.id, attempt_id=attempt_id, question_id=question_id)
        else:
            rows = self.answer_repo.list_scoped(teacher_id=user.id, attempt_id=attempt_id, question_id=question_id)
        return [a.model_dump() for a in rows]

    def regrade(self, teacher: models.User, answer_id: str, is_correct: bool, points_earned: Optional[int] = None) -> dict:
        """Override the grade of one answer and rescore its attempt."""
        answer = self.answer_repo.get(answer_id)
        if answer is None:
            raise NotFound("Answer not found")
        attempt = self.attempt_repo.get(answer.attempt_id)
        quiz = self.quiz_repo.get(attempt.quiz_id)
        if quiz.teacher_id != teacher.id:
            raise PermissionDenied("You do not own this quiz")
        question = self.question_repo.get(answer.question_id)
        if points_earned is None:
            points_earned = question.points if is_correct else 0
        if not 0 <= points_earned <= question.points:
            raise ValidationFailed(f"points_earned must be between 0 and {question.points}")
        try:
            answer.is_correct = is_correct
            answer.points_earned = points_earned
            self.answer_repo.add(answer)
            attempt.score = self.answer_repo.sum_points(attempt.id)
            self.attempt_repo.add(attempt)
            if quiz.class_id:
                LeaderboardService(self.session).recalculate(quiz.class_id, attempt.student_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(answer)
        self.session.refresh(attempt)
        if quiz.class_id:
            LeaderboardService(self.session).broadcast(quiz.class_id, updated_by=teacher.id)
        logger.info("answer_regraded answer_id=%s attempt_score=%s", answer.id, attempt.score)
        row = answer.model_dump()
        row["attempt_score"] = attempt.score
        return row
