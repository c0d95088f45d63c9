"""Custom exceptions and exception handlers.

This module provides structured exception handling with:
- Application exception classes mapped to HTTP status codes
- Access-denial exceptions raised by the access control pipeline
- FastAPI exception handlers for consistent error responses
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketguard.oauth.exceptions import OAuthError
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from fastapi import Request

logger = get_logger(__name__)

# OAuth error codes that mean the caller could not prove who they are
_OAUTH_UNAUTHORIZED_CODES = frozenset({"invalid_state", "invalid_id_token"})


class ErrorDetail(BaseModel):
    """Structured error detail for validation errors."""

    code: str
    message: str
    field: str | None = None


class ErrorResponse(BaseModel):
    """Structured error response."""

    error: str
    message: str
    details: list[ErrorDetail] | None = None
    request_id: str | None = None


class AccessErrorResponse(ErrorResponse):
    """Error response for access denials, carrying where the client should go."""

    login_url: str | None = None
    redirect_to: str | None = None


class OAuthErrorResponse(BaseModel):
    """OAuth-style error body (RFC 6749 section 5.2 field names)."""

    error: str
    error_description: str
    request_id: str | None = None


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class
    for consistent error handling.
    """

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: list[ErrorDetail] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details
        self.headers = headers
        super().__init__(message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="NOT_FOUND",
            message=f"{resource} with identifier '{identifier}' not found",
        )


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Could not validate credentials") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="UNAUTHORIZED",
            message=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="FORBIDDEN",
            message=message,
        )


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="BAD_REQUEST",
            message=message,
        )


class ServiceUnavailableException(AppException):
    """Service unavailable exception."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="SERVICE_UNAVAILABLE",
            message=message,
        )


class AuthenticationRequired(AppException):
    """Layer 1 denial: the caller must sign in first.

    The response points the client at the login page, carrying the
    original path so the user lands back where they started.
    """

    def __init__(
        self,
        login_url: str,
        message: str = "Authentication required",
    ) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="AUTHENTICATION_REQUIRED",
            message=message,
            headers={"Location": login_url, "WWW-Authenticate": "Bearer"},
        )
        self.login_url = login_url


class AccessDenied(AppException):
    """Layer 2 or 3 denial.

    The message is generic: which check failed is recorded in
    the audit trail, never returned to the caller.
    """

    def __init__(self, redirect_to: str = "/") -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="ACCESS_DENIED",
            message="Access denied",
        )
        self.redirect_to = redirect_to


def _get_request_id(request: Request) -> str | None:
    """Extract request ID from request state."""
    return getattr(request.state, "request_id", None)


def oauth_error_status(code: str) -> int:
    """Map an OAuth error code to the HTTP status returned to the browser."""
    if code in _OAUTH_UNAUTHORIZED_CODES:
        return status.HTTP_401_UNAUTHORIZED
    if code == "unknown_provider":
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST


def oauth_error_response(request: Request, exc: OAuthError) -> ORJSONResponse:
    """Render an OAuth failure in the OAuth error format."""
    return ORJSONResponse(
        status_code=oauth_error_status(exc.code),
        content=OAuthErrorResponse(
            error=exc.code,
            error_description=exc.message,
            request_id=_get_request_id(request),
        ).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI application."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> ORJSONResponse:
        """Handle custom application exceptions."""
        if isinstance(exc, (AuthenticationRequired, AccessDenied)):
            body: ErrorResponse = AccessErrorResponse(
                error=exc.error,
                message=exc.message,
                request_id=_get_request_id(request),
                login_url=getattr(exc, "login_url", None),
                redirect_to=getattr(exc, "redirect_to", None),
            )
        else:
            body = ErrorResponse(
                error=exc.error,
                message=exc.message,
                details=exc.details,
                request_id=_get_request_id(request),
            )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(exclude_none=True),
            headers=exc.headers,
        )

    @app.exception_handler(OAuthError)
    async def oauth_exception_handler(
        request: Request,
        exc: OAuthError,
    ) -> ORJSONResponse:
        """Render OAuth failures in the OAuth error format."""
        return oauth_error_response(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException,
    ) -> ORJSONResponse:
        """Handle Starlette HTTP exceptions."""
        return ORJSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error="HTTP_ERROR",
                message=str(exc.detail),
                request_id=_get_request_id(request),
            ).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> ORJSONResponse:
        """Handle Pydantic validation errors."""
        details = [
            ErrorDetail(
                code="VALIDATION_ERROR",
                message=error["msg"],
                field=".".join(str(loc) for loc in error["loc"]),
            )
            for error in exc.errors()
        ]
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="VALIDATION_ERROR",
                message="Request validation failed",
                details=details,
                request_id=_get_request_id(request),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> ORJSONResponse:
        """Handle unexpected exceptions."""
        logger.opt(exception=exc).error("Unhandled exception")

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="INTERNAL_SERVER_ERROR",
                message="An unexpected error occurred",
                request_id=_get_request_id(request),
            ).model_dump(),
        )
