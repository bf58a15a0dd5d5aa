"""Quiz endpoints plus the nested question routes of a quiz."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user, require_teacher
from ..database import get_session
from ..schemas import QuestionIn, QuizIn

router = APIRouter()


@router.get("")
def list_quizzes(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return quizzes visible to the caller with status and `can_take`."""
    return services.QuizService(db).list_for(user)


@router.get("/{quiz_id}")
def get_quiz(quiz_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.QuizService(db).get_for(user, quiz_id)


@router.get("/{quiz_id}/questions")
def quiz_questions(quiz_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.QuizService(db).questions_for(user, quiz_id)


@router.post("", status_code=201)
def create_quiz(payload: QuizIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    """Create a quiz; publishing it to a class notifies the enrolled students."""
    return services.QuizService(db).create(teacher, payload.model_dump(exclude_unset=True))


@router.put("/{quiz_id}")
def update_quiz(quiz_id: str, payload: QuizIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    return services.QuizService(db).update(teacher, quiz_id, payload.model_dump(exclude_unset=True))


@router.delete("/{quiz_id}")
def delete_quiz(quiz_id: str, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    services.QuizService(db).delete(teacher, quiz_id)
    return {"message": "Quiz deleted successfully"}


@router.post("/{quiz_id}/questions", status_code=201)
def add_question(quiz_id: str, payload: QuestionIn, db: Session = Depends(get_session), teacher: models.User = Depends(require_teacher)):
    """Append a question at the end of the quiz."""
    return services.QuestionService(db).create(teacher, quiz_id, payload.model_dump(exclude_unset=True), append=True)
