"""Class management and class-scoped enrollment endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_student, require_teacher
from ..database import get_session
from ..schemas import ClassIn

router = APIRouter()


@router.get("")
def list_classes(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Owned classes for teachers, enrolled classes for students."""
    return services.ClassService(db).list_for(user)


@router.post("", status_code=201)
def create_class(payload: ClassIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return services.ClassService(db).create(teacher, payload.name, payload.description)


@router.put("/{class_id}")
def update_class(class_id: str, payload: ClassIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return services.ClassService(db).update(teacher, class_id, payload.name, payload.description)


@router.delete("/{class_id}")
def delete_class(class_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    """Delete a class; its quizzes are kept and become unassigned."""
    services.ClassService(db).delete(teacher, class_id)
    return {"message": "Class deleted successfully"}


@router.get("/{class_id}/enrollments")
def class_enrollments(class_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return services.EnrollmentService(db).students(teacher, class_id)


@router.post("/{class_id}/enrollments", status_code=201)
def enroll_in_class(class_id: str, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    enrollment = services.EnrollmentService(db).enroll(student, class_id)
    return {"message": "Enrolled successfully", "enrollment": enrollment.model_dump()}


@router.delete("/enrollments/{enrollment_id}")
def remove_enrollment(enrollment_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.EnrollmentService(db).remove(user, enrollment_id)
    return {"message": "Enrollment removed successfully"}


@router.delete("/{class_id}/enrollments/leave")
def leave_class(class_id: str, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    services.EnrollmentService(db).leave(student, class_id)
    return {"message": "Left class successfully"}
