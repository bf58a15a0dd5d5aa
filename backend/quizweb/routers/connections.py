"""Student connections and quiz challenges."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import require_student
from ..database import get_session
from ..schemas import ChallengeIn, ConnectionIn, StatusUpdateIn

router = APIRouter()


@router.get("")
def list_connections(db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    return services.ConnectionService(db).list_for(student)


@router.get("/requests")
def pending_requests(db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    return services.ConnectionService(db).requests(student)


@router.post("", status_code=201)
def request_connection(payload: ConnectionIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    conn = services.ConnectionService(db).create(student, payload.connected_student_id)
    return {"message": "Connection request sent", "connection": conn.model_dump()}


@router.put("/{connection_id}")
def respond_to_connection(connection_id: str, payload: StatusUpdateIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    conn = services.ConnectionService(db).respond(student, connection_id, payload.status)
    return {"message": f"Connection {conn.status}", "connection": conn.model_dump()}


@router.get("/challenges")
def list_challenges(db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    return services.ChallengeService(db).list_for(student)


@router.post("/challenge", status_code=201)
def create_challenge(payload: ChallengeIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    challenge = services.ChallengeService(db).create(student, payload.opponent_id, payload.quiz_id)
    return {"message": "Challenge sent", "challenge": challenge.model_dump()}


@router.put("/challenge/{challenge_id}")
def respond_to_challenge(challenge_id: str, payload: StatusUpdateIn, db: Session = Depends(get_session), student: models.User = Depends(require_student)):
    challenge = services.ChallengeService(db).respond(student, challenge_id, payload.status)
    return {"message": f"Challenge {challenge.status}", "challenge": challenge.model_dump()}
