"""
Error types raised by Orbit services, and the FastAPI handlers that turn
them into the one error body clients see:

    {"error": {"code": ..., "message": ..., "request_id": ...}, "detail": ...}

Services raise AppError subclasses; routes never build error responses.
"""

import builtins
import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from orbit.core.logging import get_request_id

logger = logging.getLogger("orbit.errors")


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    """Caller is not a member of the room."""
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    """Duplicate completion, or a streak write that kept losing its compare."""
    code = "conflict"
    status_code = 409


class LimitReachedError(AppError):
    """Daily quota used up, or the last slot was taken by a concurrent request."""
    code = "limit_reached"
    status_code = 429


class PersistenceError(AppError):
    """The store could not be reached."""
    code = "persistence_unavailable"
    status_code = 503


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _respond(status: int, code: str, message: str, rid: str) -> JSONResponse:
    body = {"error": {"code": code, "message": message, "request_id": rid}, "detail": message}
    return JSONResponse(status_code=status, content=body, headers={"x-request-id": rid})


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        f"{exc.code}: {exc.message}",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "path": request.url.path},
    )
    return _respond(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning(
        f"{code}: {exc.detail}",
        extra={"request_id": rid, "error_code": code, "status": exc.status_code, "path": request.url.path},
    )
    return _respond(exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies, headers and query params are a plain 400, like service ValidationErrors."""
    rid = _request_id(request)
    problems = exc.errors()
    if problems:
        first = problems[0]
        where = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{where}: {first.get('msg', 'invalid')}" if where else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    logger.warning(
        f"validation_error: {message}",
        extra={"request_id": rid, "error_code": "validation_error", "status": 400, "path": request.url.path},
    )
    return _respond(400, "validation_error", message, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id(request)
    logger.error(
        "unhandled exception",
        exc_info=exc,
        extra={"request_id": rid, "error_code": "internal_error", "path": request.url.path},
    )
    return _respond(500, "internal_error", "Unexpected error", rid)
