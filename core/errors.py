# core/errors.py
"""Application error taxonomy.

Route handlers and services raise these; ``main.py`` turns them into
``{"error": message, ...extra}`` JSON responses with the matching status.
"""
from typing import Any, Dict


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class UpstreamError(AppError):
    status_code = 502
