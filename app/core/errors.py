# app/core/errors.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base engine error, always request-scoped and mapped to an HTTP status."""

    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__


class NotFoundError(DomainError):
    status_code = 404
    default_message = "Resource not found"


class BadRequestError(DomainError):
    status_code = 400
    default_message = "Bad request"


class InvalidTransitionError(BadRequestError):
    default_message = "Invalid status transition"


class SessionFullError(BadRequestError):
    default_message = "Session and waitlist are full"


class ForbiddenError(DomainError):
    status_code = 403
    default_message = "Forbidden"


class ConflictError(DomainError):
    status_code = 409
    default_message = "Conflict, please retry"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "request rejected",
        extra={"code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )
    body: Dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)
