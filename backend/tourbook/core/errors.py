"""
Operational errors and the central error responder.

Every failure raised while handling a request ends up in one of the handlers
registered by ``register_exception_handlers`` and is rendered with the
``{"status": ..., "message": ...}`` envelope.
"""

import traceback

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tourbook.core.settings import get_settings

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """An expected, user-facing failure with an HTTP status."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if 400 <= status_code < 500 else "error"
        self.is_operational = True


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {
        "status": "fail" if 400 <= status_code < 500 else "error",
        "message": message,
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _validation_messages(errors) -> str:
    messages = []
    for err in errors:
        location = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        message = err.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return ". ".join(messages)


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("operational_error", message=exc.message, path=request.url.path)
    return error_response(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc):
    message = f"Invalid input data. {_validation_messages(exc.errors())}"
    return error_response(status.HTTP_400_BAD_REQUEST, message)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    detail = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    logger.warning("integrity_error", error=detail, path=request.url.path)
    if "unique" in detail or "duplicate" in detail:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Duplicate field value. Please use another value!",
        )
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid input data.")


async def jwt_error_handler(request: Request, exc: JWTError):
    if isinstance(exc, ExpiredSignatureError):
        return error_response(
            status.HTTP_401_UNAUTHORIZED,
            "Your token has expired! Please log in again.",
        )
    return error_response(status.HTTP_401_UNAUTHORIZED, "Invalid token. Please log in again!")


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limit_exceeded", path=request.url.path, limit=str(exc.detail))
    return error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests from this IP, please try again in an hour",
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        return error_response(exc.status_code, f"Can't find {request.url.path} on this server")
    return error_response(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    if get_settings().is_production:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Something went very wrong!")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        str(exc),
        error=type(exc).__name__,
        stack=traceback.format_exception(type(exc), exc, exc.__traceback__),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
