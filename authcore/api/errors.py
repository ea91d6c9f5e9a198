"""Map auth exceptions to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authcore.api.schemas import ErrorResponse
from authcore.core.errors import (
    AccountLockedError,
    AuthError,
    InternalAuthError,
    InvalidCredentialsError,
    KeyNotFoundError,
    RateLimitedError,
    SessionNotFoundError,
    TokenInvalidError,
    UserNotFoundError,
)
from authcore.core.logging import get_logger

logger = get_logger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404
HTTP_LOCKED = 423
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500

_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    InvalidCredentialsError: HTTP_UNAUTHORIZED,
    AccountLockedError: HTTP_LOCKED,
    RateLimitedError: HTTP_TOO_MANY_REQUESTS,
    TokenInvalidError: HTTP_UNAUTHORIZED,
    KeyNotFoundError: HTTP_UNAUTHORIZED,
    SessionNotFoundError: HTTP_NOT_FOUND,
    UserNotFoundError: HTTP_NOT_FOUND,
    InternalAuthError: HTTP_SERVER_ERROR,
}


def status_for(exc: AuthError) -> int:
    for error_type in type(exc).__mro__:
        status = _STATUS_BY_ERROR.get(error_type)  # type: ignore[arg-type]
        if status is not None:
            return status
    return HTTP_SERVER_ERROR


def error_body(exc: AuthError) -> ErrorResponse:
    body = ErrorResponse(error=exc.code, error_description=str(exc))
    if isinstance(exc, AccountLockedError):
        body.locked_until = exc.until
    if isinstance(exc, RateLimitedError):
        body.remaining_attempts = exc.remaining_attempts
    if isinstance(exc, KeyNotFoundError):
        body.error = TokenInvalidError.code
        body.error_description = "Invalid or expired token"
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Render every ``AuthError`` as ``{"error": code, ...}``."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        status = status_for(exc)
        log_fn = logger.error if status >= HTTP_SERVER_ERROR else logger.info
        log_fn(
            "auth_error",
            path=request.url.path,
            method=request.method,
            status_code=status,
            error_code=exc.code,
        )
        headers = {"WWW-Authenticate": "Bearer"} if status == HTTP_UNAUTHORIZED else None
        return JSONResponse(
            error_body(exc).model_dump(mode="json", exclude_none=True),
            status_code=status,
            headers=headers,
        )
