"""
Consistent error handling for the Cortex billing API.

All API errors MUST use these error classes so every response shares one shape.
Stack traces are NEVER returned to clients.

Response envelope:
    {"error": "<human readable message>", "code": "<MACHINE_CODE>", "details": {...}}

Standard HTTP status codes:
- 400: Bad Request (malformed or disallowed input, e.g. unknown price id)
- 401: Unauthorized (missing, malformed, invalid or expired credential)
- 403: Forbidden (tier insufficient, free quota reached)
- 404: Not Found (unknown resource or not owned by the caller)
- 429: Too Many Requests (rate limit)
- 500: Internal Server Error (identity/billing provider failure)
"""

import enum
import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

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
        """Convert to API error response format."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthErrorKind(str, enum.Enum):
    """Why a caller could not be authenticated. Clients render different UX per kind."""
    MISSING = "missing"
    MALFORMED = "malformed"
    INVALID = "invalid"
    EXPIRED = "expired"
    UNKNOWN_USER = "unknown_user"


class AuthenticationError(AppError):
    """Authentication failure (401)."""

    def __init__(
        self,
        message: str = "Authentication required",
        kind: AuthErrorKind = AuthErrorKind.MISSING,
    ):
        self.kind = kind
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details={"kind": kind.value},
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(AppError):
    """Tier insufficient for the requested capability (403)."""

    def __init__(self, message: str = "Upgrade required", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class QuotaExceededError(AppError):
    """Free-tier save quota reached (403) - clients render an upgrade prompt."""

    def __init__(
        self,
        message: str = "Free accounts can save 1 scenario per tool. Upgrade to Pro for unlimited saves.",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code="FREE_LIMIT_REACHED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found, or not owned by the caller (404)."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            message = f"{resource} not found"
            if identifier:
                message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        retry_after: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        details = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        headers = dict(headers or {})
        if retry_after is not None:
            headers.setdefault("Retry-After", str(retry_after))
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details,
            headers=headers,
        )


class ProviderError(AppError):
    """Identity or billing provider failure (500). Not the caller's fault."""

    def __init__(self, message: str = "Upstream provider error", provider: Optional[str] = None):
        super().__init__(
            code="PROVIDER_ERROR",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"provider": provider} if provider else None,
        )


class StorageError(AppError):
    """Local profile store failure (500)."""

    def __init__(self, message: str = "Failed to update account state"):
        super().__init__(
            code="DATABASE_ERROR",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError raised from a route or dependency."""
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    headers = dict(exc.headers)
    headers["X-Correlation-ID"] = correlation_id
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are plain 400s in the standard envelope."""
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    error = ValidationError(
        "Missing or invalid fields: " + ", ".join(f for f in fields if f),
        details={"fields": [f for f in fields if f]},
    )
    return await app_error_handler(request, error)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns correlation IDs and converts unhandled exceptions into a generic 500.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except Exception as e:
            # Log full exception for debugging (server-side only)
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "An unexpected error occurred",
                    "code": "INTERNAL_ERROR",
                    "details": {"correlation_id": correlation_id},
                },
                headers={"X-Correlation-ID": correlation_id},
            )


def register_error_handlers(app: FastAPI) -> None:
    """Wire the error envelope into a FastAPI app."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_middleware(ErrorHandlerMiddleware)
