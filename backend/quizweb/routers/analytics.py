"""Analytics endpoints: dashboards, leaderboards and report exports."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel import Session

from .. import models
from ..analytics import EXPORT_FORMATS, AnalyticsService
from ..auth import get_current_user, require_student, require_teacher
from ..database import get_session
from ..errors import ValidationFailed
from ..utils.exporters import render_csv, render_pdf

router = APIRouter()


@router.get("")
def dashboard(db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return AnalyticsService(db).dashboard(teacher)


@router.get("/student-performance/{student_id}")
def student_performance(student_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return AnalyticsService(db).student_performance(user, student_id)


@router.get("/classroom-overview/{class_id}")
def classroom_overview(class_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return AnalyticsService(db).classroom_overview(teacher, class_id)


@router.get("/quiz-analytics/{quiz_id}")
def quiz_analytics(quiz_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return AnalyticsService(db).quiz_analytics(teacher, quiz_id)


@router.get("/student-analytics/{class_id}/{student_id}")
def student_analytics(class_id: str, student_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return AnalyticsService(db).student_analytics(teacher, class_id, student_id)


@router.get("/leaderboard/{class_id}")
def leaderboard(
    class_id: str,
    search: Optional[str] = None,
    min_score: Optional[int] = None,
    max_score: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Ranked class leaderboard with filters, pagination and summary stats."""
    return AnalyticsService(db).leaderboard(
        user, class_id,
        search=search, min_score=min_score, max_score=max_score,
        start_date=start_date, end_date=end_date, limit=limit, offset=offset,
    )


@router.get("/my-performance/{class_id}")
def my_performance(class_id: str, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    return AnalyticsService(db).my_performance(student, class_id)


@router.get("/export")
def export_report(
    format: str = "csv",
    report_type: str = "classroom-overview",
    class_id: Optional[str] = None,
    quiz_id: Optional[str] = None,
    db: Session = Depends(get_session),
    teacher: models.User = Depends(require_teacher),
):
    """Download a report as a CSV or PDF attachment."""
    if format not in EXPORT_FORMATS:
        raise ValidationFailed(f"format must be one of: {', '.join(EXPORT_FORMATS)}")
    title, headers, rows, stem = AnalyticsService(db).export_table(teacher, report_type, class_id=class_id, quiz_id=quiz_id)
    if format == "csv":
        body, media_type = render_csv(headers, rows), "text/csv"
    else:
        body, media_type = render_pdf(title, headers, rows), "application/pdf"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{stem}.{format}"'},
    )
