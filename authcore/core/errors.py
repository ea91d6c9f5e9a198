"""Authentication error taxonomy."""

from datetime import datetime


class AuthError(Exception):
    """Base class for all authentication failures surfaced to callers."""

    code = "auth_error"


class InvalidCredentialsError(AuthError):
    """Unknown identity or wrong secret; the two are never distinguished."""

    code = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__("Invalid username or password")


class AccountLockedError(AuthError):
    """The account is locked until ``until``."""

    code = "account_locked"

    def __init__(self, until: datetime) -> None:
        self.until = until
        super().__init__(
            f"Account is temporarily locked until {until:%Y-%m-%d %H:%M:%S} UTC"
        )


class RateLimitedError(AuthError):
    """Too many attempts for this identity within the window."""

    code = "rate_limited"

    def __init__(self, remaining_attempts: int) -> None:
        self.remaining_attempts = remaining_attempts
        super().__init__(
            "Too many login attempts. "
            f"Remaining attempts: {remaining_attempts}"
        )


class TokenInvalidError(AuthError):
    """A presented token failed validation."""

    code = "invalid_token"

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class TokenMalformedError(TokenInvalidError):
    """Signature, structure, issuer, audience or type check failed."""


class TokenExpiredError(TokenInvalidError):
    """The token's ``exp`` has passed."""


class KeyNotFoundError(AuthError):
    """No usable key exists for the given kid."""

    code = "key_not_found"

    def __init__(self, kid: str) -> None:
        self.kid = kid
        super().__init__(f"Signing key {kid!r} not found or expired")


class SessionNotFoundError(AuthError):
    """The refresh token has no live session behind it."""

    code = "session_not_found"

    def __init__(self) -> None:
        super().__init__("Session not found or expired")


class UserNotFoundError(AuthError):
    """An operation addressed a user id that does not exist."""

    code = "user_not_found"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} not found")


class RotationInProgressError(AuthError):
    """Raised internally when a rotation attempt yields to one in flight."""

    code = "rotation_in_progress"


class InternalAuthError(AuthError):
    """Opaque wrapper for storage or key generation failures."""

    code = "server_error"

    def __init__(self) -> None:
        super().__init__("Internal authentication failure")
