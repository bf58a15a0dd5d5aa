"""Enrollment endpoints, including joining a class by its code."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_student
from ..database import get_session
from ..schemas import EnrollByCodeIn, EnrollmentIn

router = APIRouter()


@router.get("")
def list_enrollments(class_id: Optional[str] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.EnrollmentService(db).list_for(user, class_id)


@router.post("", status_code=201)
def enroll(payload: EnrollmentIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    enrollment = services.EnrollmentService(db).enroll(student, payload.class_id)
    return {"message": "Enrolled successfully", "enrollment": enrollment.model_dump()}


@router.post("/enroll-by-code", status_code=201)
def enroll_by_code(payload: EnrollByCodeIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    enrollment = services.EnrollmentService(db).enroll_by_code(student, payload.class_code)
    return {"message": "Enrolled successfully", "enrollment": enrollment.model_dump()}


@router.delete("/{enrollment_id}")
def delete_enrollment(enrollment_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.EnrollmentService(db).remove(user, enrollment_id)
    return {"message": "Enrollment removed successfully"}
