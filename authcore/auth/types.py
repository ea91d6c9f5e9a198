"""Collaborator interfaces and result types for the login workflows."""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field


class LockState(BaseModel):
    """Failed-attempt counter and lock fields stored on the user record."""

    failed_attempts: int = 0
    last_attempt_at: datetime | None = None
    is_locked: bool = False
    lockout_end: datetime | None = None

    def locked_at(self, now: datetime) -> bool:
        """A lock only counts while ``lockout_end`` is still in the future."""
        return self.is_locked and self.lockout_end is not None and self.lockout_end > now


class UserAccount(BaseModel):
    """The slice of a user record the auth core reads."""

    id: str
    username: str
    email: str
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    mfa_enabled: bool = False
    password_hash: str | None = None


class UserDirectory(Protocol):
    """User lookup and credential storage owned by another component."""

    async def find_by_identity(self, identity: str) -> UserAccount | None: ...

    async def find_by_id(self, user_id: str) -> UserAccount | None: ...

    async def verify_password(self, user: UserAccount, secret: str) -> bool: ...

    async def get_lock_state(self, user_id: str) -> LockState | None: ...

    async def save_lock_state(self, user_id: str, state: LockState) -> None: ...


class RequestContext(BaseModel):
    """Where a login or refresh request came from."""

    ip_address: str | None = None
    device_info: str | None = None


class TokenPair(BaseModel):
    """Access and refresh tokens handed to a client."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    session_id: str
    user_id: str


class ChallengeRequired(BaseModel):
    """Credentials were correct but a second factor is required first."""

    user_id: str
    challenge: str = "Please enter your MFA code"


LoginResult = TokenPair | ChallengeRequired
