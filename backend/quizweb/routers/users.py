"""User profile endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user
from ..database import get_session
from ..schemas import UserUpdateIn

router = APIRouter()


@router.get("")
def list_users(role: Optional[str] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.UserService(db).list(role)


@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.UserService(db).get(user, user_id)


@router.put("/{user_id}")
def update_user(user_id: str, payload: UserUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update the caller's own display name, bio or avatar."""
    return services.UserService(db).update(user, user_id, payload.model_dump(exclude_unset=True))
