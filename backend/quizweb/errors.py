"""Service-level exceptions.

Services raise these instead of `HTTPException` so they stay usable from
scripts and tests. `main.py` registers a handler that maps them onto JSON
responses with the matching status code.
"""

from typing import Optional


class ServiceError(ValueError):
    """Base error raised by services; subclasses ValueError so plain
    `except ValueError` call sites keep working."""
    status_code = 400
    error_code = "BAD_REQUEST"

    def __init__(self, detail: str, error_code: Optional[str] = None):
        self.detail = detail
        if error_code:
            self.error_code = error_code
        super().__init__(detail)


class ValidationFailed(ServiceError):
    status_code = 400
    error_code = "VALIDATION_FAILED"


class AuthenticationFailed(ServiceError):
    status_code = 401
    error_code = "AUTHENTICATION_FAILED"


class PermissionDenied(ServiceError):
    status_code = 403
    error_code = "PERMISSION_DENIED"


class NotFound(ServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class Conflict(ServiceError):
    status_code = 409
    error_code = "CONFLICT"
