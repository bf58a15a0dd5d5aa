"""Grade card PDF download."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlmodel import Session

from .. import models
from ..analytics import AnalyticsService
from ..auth import require_student
from ..database import get_session
from ..utils.grade_card import render_grade_card

router = APIRouter()


@router.get("/{class_id}")
def download_grade_card(class_id: str, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    card = AnalyticsService(db).grade_card(student, class_id)
    return Response(
        content=render_grade_card(card),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="grade-card-{class_id[:8]}.pdf"'},
    )
