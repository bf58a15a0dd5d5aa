"""Question endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_teacher
from ..database import get_session
from ..schemas import QuestionIn

router = APIRouter()


@router.get("/quiz/{quiz_id}")
def list_questions(quiz_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.QuestionService(db).list_for(user, quiz_id)


@router.post("", status_code=201)
def create_question(payload: QuestionIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    data = payload.model_dump(exclude_unset=True)
    return services.QuestionService(db).create(teacher, data.pop("quiz_id", None), data)


@router.put("/{question_id}")
def update_question(question_id: str, payload: QuestionIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return services.QuestionService(db).update(teacher, question_id, payload.model_dump(exclude_unset=True))


@router.delete("/{question_id}")
def delete_question(question_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    services.QuestionService(db).delete(teacher, question_id)
    return {"message": "Question deleted successfully"}
