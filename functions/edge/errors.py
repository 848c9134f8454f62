"""
Application errors and their translation into HTTP responses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """A tagged error carrying an error code, a user-facing message and a status."""

    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return not 400 <= self.status_code < 500


def validation_error(message: str, field: str | None = None) -> AppError:
    full = f"Validation failed for {field}: {message}" if field else message
    return AppError("VALIDATION_ERROR", full, 400)


def rate_limit_error(reset_minutes: int) -> AppError:
    return AppError(
        "RATE_LIMIT_EXCEEDED",
        f"Rate limit exceeded. Try again in {reset_minutes} minutes.",
        429,
    )


def authentication_error(message: str = "Authentication required") -> AppError:
    return AppError("UNAUTHORIZED", message, 401)


def permission_error(message: str = "Insufficient permissions") -> AppError:
    return AppError("PERMISSION_DENIED", message, 403)


def configuration_error(missing_vars: Iterable[str]) -> AppError:
    return AppError(
        "CONFIGURATION_ERROR",
        f"Missing required environment variables: {', '.join(missing_vars)}",
        500,
    )


# Checked in order; the first matching keyword wins.
_CATEGORIES = (
    (("rate limit",), "RATE_LIMIT_EXCEEDED", "Too many requests. Please try again later.", 429),
    (
        ("database", "postgres", "constraint", "relation"),
        "DATABASE_ERROR",
        "Database service temporarily unavailable",
        503,
    ),
    (
        ("openai", "anthropic", "llm"),
        "LLM_SERVICE_ERROR",
        "AI service temporarily unavailable",
        503,
    ),
    (
        ("config", "environment", "missing required"),
        "CONFIGURATION_ERROR",
        "Service configuration error",
        500,
    ),
    (
        ("timeout", "network", "connection"),
        "NETWORK_ERROR",
        "Network error. Please try again.",
        503,
    ),
    (
        ("auth", "unauthorized", "jwt", "token"),
        "AUTHENTICATION_ERROR",
        "Authentication failed",
        401,
    ),
    (
        ("permission", "forbidden", "access denied"),
        "PERMISSION_DENIED",
        "Insufficient permissions",
        403,
    ),
)


def categorize_error(error: BaseException) -> AppError:
    """Maps an arbitrary exception onto an AppError by inspecting its message."""
    if isinstance(error, AppError):
        return error

    message = str(error)
    lowered = message.lower()
    for keywords, code, public_message, status in _CATEGORIES:
        if any(keyword in lowered for keyword in keywords):
            return AppError(code, public_message, status)
    if any(keyword in lowered for keyword in ("validation", "invalid", "required")):
        return AppError("VALIDATION_ERROR", message, 400)
    return AppError("INTERNAL_SERVER_ERROR", "An unexpected error occurred", 500)


def error_body(error: AppError, request_id: Optional[str] = None) -> dict:
    body = {
        "code": error.code,
        "message": error.message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if request_id:
        body["requestId"] = request_id
    return {"success": False, "error": body}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def error_response(error: AppError, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code, content=error_body(error, _request_id(request))
    )


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    logger.warning(
        "[%s] %s %s -> %s: %s",
        _request_id(request),
        request.method,
        request.url.path,
        exc.code,
        exc.message,
    )
    return error_response(exc, request)


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p not in ('body', 'query'))}:"
        f" {err.get('msg')}"
        for err in exc.errors()
    )
    return await _handle_app_error(request, validation_error(details or "Invalid request"))


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "[%s] Unhandled error on %s %s",
        _request_id(request),
        request.method,
        request.url.path,
    )
    return error_response(categorize_error(exc), request)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)
