"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Update schemas leave every field optional;
services only apply the fields a client actually sent
(`model_dump(exclude_unset=True)`).
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class SignupIn(BaseModel):
    """Payload for the signup endpoint."""
    email: str
    password: str
    role: str
    display_name: str


class SigninIn(BaseModel):
    """Payload for the signin endpoint; `role` selects the login portal."""
    email: str
    password: str
    role: str


class UserUpdateIn(BaseModel):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None


class ClassIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class EnrollmentIn(BaseModel):
    class_id: Optional[str] = None


class EnrollByCodeIn(BaseModel):
    class_code: Optional[str] = None


class QuizIn(BaseModel):
    """Quiz create/update payload."""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    class_id: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=0)
    total_points: Optional[int] = Field(default=None, ge=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_published: Optional[bool] = None


class QuestionIn(BaseModel):
    """Question create/update payload.

    `quiz_id` is only read by `POST /api/questions`; the nested quiz route
    takes the quiz from the path.
    """
    quiz_id: Optional[str] = None
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    points: Optional[int] = Field(default=None, ge=0)
    order_index: Optional[int] = Field(default=None, ge=0)
    options: Optional[List[Any]] = None
    correct_answer: Optional[str] = None


class AttemptIn(BaseModel):
    quiz_id: Optional[str] = None


class SubmittedAnswer(BaseModel):
    """Single submitted answer item used when grading an attempt."""
    question_id: str
    answer: str


class AttemptSubmission(BaseModel):
    """Request model for submission containing a list of answers."""
    answers: List[SubmittedAnswer]


class AnswerRegradeIn(BaseModel):
    is_correct: bool
    points_earned: Optional[int] = None


class ConnectionIn(BaseModel):
    connected_student_id: Optional[str] = None


class StatusUpdateIn(BaseModel):
    """Accept/reject payload shared by connections and challenges."""
    status: str


class ChallengeIn(BaseModel):
    opponent_id: Optional[str] = None
    quiz_id: Optional[str] = None
