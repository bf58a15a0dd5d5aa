"""Quiz attempt endpoints: start, inspect and submit."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_student
from ..database import get_session
from ..schemas import AttemptIn, AttemptSubmission

router = APIRouter()


@router.get("")
def list_attempts(
    student_id: Optional[str] = None,
    quiz_id: Optional[str] = None,
    is_completed: Optional[bool] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.AttemptService(db).list_for(user, student_id=student_id, quiz_id=quiz_id, is_completed=is_completed)


@router.post("", status_code=201)
def start_attempt(payload: AttemptIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    attempt = services.AttemptService(db).start(student, payload.quiz_id)
    return {"message": "Quiz attempt started", "attempt": attempt.model_dump()}


@router.get("/{attempt_id}")
def get_attempt(attempt_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AttemptService(db).get_for(user, attempt_id)


@router.post("/{attempt_id}/submit")
def submit_attempt(attempt_id: str, submission: AttemptSubmission, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    """Grade the active attempt.

    The service stores the graded answers, updates the class leaderboard
    and resolves challenges in one transaction, then pushes the new
    leaderboard to the class.
    """
    answers = [a.model_dump() for a in submission.answers]
    return services.AttemptService(db).submit(student, attempt_id, answers)
