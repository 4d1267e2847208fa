"""
Error types and HTTP error rendering for the member portal API.

Every error body has the shape ``{"error": {"code", "message", "details"}}``
and every response carries ``X-Correlation-ID``. Tracebacks stay in the
server log.

Status codes used by the portal:
- 400 rejected input (missing fields, suspicious content)
- 401 no user identity, bad credentials
- 402 enrollment expired
- 403 not enrolled, drip-locked, not an admin, blocked IP
- 404 unknown comment
- 429 rate limited or locked out (with Retry-After)
- 503 entitlement store or auth provider unavailable
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


class AppError(Exception):
    """Base for errors that map directly onto an HTTP response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers or {}

    def to_dict(self) -> dict:
        return error_body(self.code, self.message, self.details)


class ValidationError(AppError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, status.HTTP_400_BAD_REQUEST, details)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication required", details: Optional[dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, status.HTTP_401_UNAUTHORIZED, details)


class PaymentRequiredError(AppError):
    """The member's enrollment has lapsed; renewing restores access."""

    def __init__(self, message: str = "Your access has expired", details: Optional[dict[str, Any]] = None):
        super().__init__("PAYMENT_REQUIRED", message, status.HTTP_402_PAYMENT_REQUIRED, details)


class PermissionDeniedError(AppError):
    """403 with a caller-chosen code (NOT_ENROLLED, LESSON_LOCKED, REQUEST_BLOCKED...)."""

    def __init__(
        self,
        message: str = "Permission denied",
        details: Optional[dict[str, Any]] = None,
        code: str = "PERMISSION_DENIED",
    ):
        super().__init__(code, message, status.HTTP_403_FORBIDDEN, details)


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__("NOT_FOUND", message, status.HTTP_404_NOT_FOUND)


class RateLimitError(AppError):
    """
    Too many attempts, or an account lockout.

    ``retry_after`` (seconds) is exposed both as the Retry-After header and
    as ``details.retry_after_seconds``.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        code: str = "RATE_LIMIT_EXCEEDED",
    ):
        details: dict[str, Any] = {}
        headers: dict[str, str] = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
            headers["Retry-After"] = str(retry_after)
        super().__init__(code, message, status.HTTP_429_TOO_MANY_REQUESTS, details, headers)


class ServiceUnavailableError(AppError):
    def __init__(self, message: str = "Service temporarily unavailable", details: Optional[dict[str, Any]] = None):
        super().__init__("SERVICE_UNAVAILABLE", message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


def error_body(code: str, message: str, details: Optional[dict[str, Any]] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


def correlation_id_for(request: Request) -> str:
    """Incoming header wins, then an id already stored on the request, else a new one."""
    incoming = request.headers.get(CORRELATION_HEADER)
    if incoming:
        return incoming
    existing = getattr(request.state, "correlation_id", None)
    return existing or str(uuid.uuid4())


def _request_context(request: Request, correlation_id: str) -> dict:
    return {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
    }


def render_app_error(request: Request, exc: AppError, correlation_id: str) -> JSONResponse:
    logger.warning(
        "Application error",
        extra={
            **_request_context(request, correlation_id),
            "error_code": exc.code,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={**exc.headers, CORRELATION_HEADER: correlation_id},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Registered with ``app.add_exception_handler`` for errors raised in dependencies."""
    return render_app_error(request, exc, correlation_id_for(request))


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Tags responses with a correlation id and renders uncaught errors."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = correlation_id_for(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except AppError as exc:
            return render_app_error(request, exc, correlation_id)
        except HTTPException as exc:
            logger.warning(
                "HTTP exception",
                extra={**_request_context(request, correlation_id), "status_code": exc.status_code},
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=error_body("HTTP_ERROR", str(exc.detail)),
                headers={CORRELATION_HEADER: correlation_id},
            )
        except Exception as exc:
            logger.exception(
                "Unhandled exception",
                extra={**_request_context(request, correlation_id), "error_type": type(exc).__name__},
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_body("INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE, {"correlation_id": correlation_id}),
                headers={CORRELATION_HEADER: correlation_id},
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
