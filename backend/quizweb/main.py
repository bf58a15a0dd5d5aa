"""FastAPI application entrypoint.

This module builds the QuizWeb HTTP service: middleware, error handling,
health checks and the route groups. Controllers live in `quizweb.routers`
and are intentionally thin: they accept requests, delegate to services,
and return JSON responses.

Route groups (all under `/api`):
- /auth, /users
- /classes, /enrollments
- /quizzes, /questions, /attempts, /answers
- /connections, /notifications
- /analytics, /grade-card
plus the `/ws` WebSocket for real-time events.
"""

import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import settings
from .database import create_db_and_tables
from .errors import ServiceError
from .routers import (
    analytics,
    answers,
    attempts,
    auth,
    classes,
    connections,
    enrollments,
    grade_card,
    notifications,
    questions,
    quizzes,
    realtime,
    users,
)

app = FastAPI(title="QuizWeb API")
logger = logging.getLogger("quizweb.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _request_log(request: Request, req_id: str, started: float, **extra) -> str:
    record = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    record.update(extra)
    return json.dumps(record, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        if request.url.path.startswith("/api"):
            logger.exception("request_failed %s", _request_log(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path.startswith("/api"):
        logger.info("request_done %s", _request_log(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error_code": exc.error_code})


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(classes.router, prefix="/api/classes", tags=["classes"])
app.include_router(enrollments.router, prefix="/api/enrollments", tags=["enrollments"])
app.include_router(quizzes.router, prefix="/api/quizzes", tags=["quizzes"])
app.include_router(questions.router, prefix="/api/questions", tags=["questions"])
app.include_router(attempts.router, prefix="/api/attempts", tags=["attempts"])
app.include_router(answers.router, prefix="/api/answers", tags=["answers"])
app.include_router(connections.router, prefix="/api/connections", tags=["connections"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
app.include_router(grade_card.router, prefix="/api/grade-card", tags=["grade-card"])
app.include_router(realtime.router, tags=["realtime"])


@app.get("/")
def root():
    return {"status": "ok", "message": "QuizWeb API is running"}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("quizweb.main:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
