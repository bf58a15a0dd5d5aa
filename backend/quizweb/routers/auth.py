"""Signup, signin and profile endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user
from ..config import settings
from ..database import get_session
from ..schemas import SigninIn, SignupIn
from ..utils.rate_limit import SlidingWindowLimiter

router = APIRouter()
signin_limiter = SlidingWindowLimiter(max_hits=settings.LOGIN_RATE_LIMIT_PER_MIN, window_seconds=60)


def _enforce_signin_rate_limit(request: Request, email: str) -> None:
    client = request.client.host if request.client else "unknown"
    allowed, retry_after = signin_limiter.hit(f"{client}:{(email or '').strip().lower()}")
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many sign-in attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@router.post("/signup", status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_session)):
    """Register a new student or teacher account."""
    user = services.AuthService(db).register(payload.email, payload.password, payload.role, payload.display_name)
    return {"message": "User created successfully", "user_id": user.id}


@router.post("/signin")
def signin(payload: SigninIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate through the student or teacher portal and return a JWT.

    The token carries `id`, `email`, `role` and `display_name` and is
    signed with the configured secret.
    """
    _enforce_signin_rate_limit(request, payload.email)
    token, user = services.AuthService(db).authenticate(payload.email, payload.password, payload.role)
    return {"message": "Login successful", "token": token, "user": services.public_user(user)}


@router.get("/me")
def me(user: models.User = Depends(get_current_user)):
    return services.public_user(user)


@router.post("/signout")
def signout(user: models.User = Depends(get_current_user)):
    """Tokens are stateless; the client simply discards its copy."""
    return {"message": "Signed out successfully"}
