"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens and the FastAPI
dependencies `get_current_user`, `require_teacher` and `require_student`.
`get_current_user` validates the bearer token and returns the matching
`User` model instance loaded through the request's database session.

Token verification raises HTTPExceptions on failure so the helpers can be
used directly inside route dependencies. `decode_token` is also used by
the WebSocket endpoint, which maps the exception onto a close code.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="invalid token")


def user_from_token(token: str, session: Session) -> models.User:
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="invalid token payload")
    user = repositories.UserRepository(session).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and looks the user up in the request session. It raises an
    HTTPException(401) for any authentication issue.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    return user_from_token(credentials.credentials, session)


def require_teacher(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != models.UserRole.TEACHER.value:
        raise HTTPException(status_code=403, detail="Teacher access required")
    return user


def require_student(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != models.UserRole.STUDENT.value:
        raise HTTPException(status_code=403, detail="Student access required")
    return user
