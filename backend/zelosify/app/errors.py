"""Service error taxonomy and the FastAPI handlers that render it."""
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .logging import get_logger

logger = get_logger("zelosify.errors")


class ServiceError(Exception):
    """Base class for errors mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a default stable
    ``error_code``. Call sites narrow the code (``no_token``,
    ``invalid_totp`` ...) so clients can branch without parsing messages.
    """

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail or {}


class InputError(ServiceError):
    """Required input missing or malformed (400)."""

    status_code = 400
    error_code = "missing_input"


class InvalidRoleError(InputError):
    """A route was wired with a role name the system does not define (400)."""

    error_code = "invalid_role"


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credentials (401)."""

    status_code = 401
    error_code = "unauthorized"


class AuthorizationError(ServiceError):
    """Authenticated but not allowed (403)."""

    status_code = 403
    error_code = "role_required"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class UpstreamError(ServiceError):
    """The identity provider or another remote collaborator failed (502).

    ``body`` keeps the remote error payload for logging. Call sites usually
    re-raise this as a 401 or 500 depending on where the failure happened.
    """

    status_code = 502
    error_code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        body: str | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code)
        self.upstream_status = upstream_status
        self.body = body


class InternalError(ServiceError):
    status_code = 500
    error_code = "internal_error"


def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, "code": code})


def register_exception_handlers(app: FastAPI) -> None:
    """Render :class:`ServiceError` subclasses as ``{"detail", "code"}`` bodies."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return error_response(exc.status_code, exc.message, exc.error_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return error_response(500, "Internal server error", InternalError.error_code)


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "InputError",
    "InternalError",
    "InvalidRoleError",
    "NotFoundError",
    "ServiceError",
    "UpstreamError",
    "error_response",
    "register_exception_handlers",
]
