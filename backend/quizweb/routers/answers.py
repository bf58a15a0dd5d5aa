"""Graded answer endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_teacher
from ..database import get_session
from ..schemas import AnswerRegradeIn

router = APIRouter()


@router.get("")
def list_answers(
    attempt_id: Optional[str] = None,
    question_id: Optional[str] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.AnswerService(db).list_for(user, attempt_id=attempt_id, question_id=question_id)


@router.patch("/{answer_id}")
def regrade_answer(answer_id: str, payload: AnswerRegradeIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    """Manually override the grade of a single answer."""
    return services.AnswerService(db).regrade(teacher, answer_id, payload.is_correct, payload.points_earned)
