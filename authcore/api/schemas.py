"""Request and response bodies for the HTTP routes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LoginPayload(BaseModel):
    """Request body for POST /auth/login."""

    identity: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)
    device_info: str | None = None


class RefreshPayload(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(min_length=1)
    device_info: str | None = None


class VerifyPayload(BaseModel):
    access_token: str = Field(min_length=1)


class LogoutPayload(BaseModel):
    refresh_token: str = Field(min_length=1)


class TokenPairResponse(BaseModel):
    """A freshly issued access/refresh pair."""

    model_config = ConfigDict(from_attributes=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    session_id: str
    user_id: str


class MfaChallengeResponse(BaseModel):
    """Returned with 202 when the password was right but MFA is required."""

    mfa_required: bool = True
    user_id: str
    challenge: str


class VerifyResponse(BaseModel):
    """Response for POST /auth/verify."""

    valid: bool
    user_id: str | None = None
    roles: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    reason: str | None = None


class LogoutResponse(BaseModel):
    success: bool = True


class LogoutAllResponse(BaseModel):
    sessions_terminated: int


class SessionResponse(BaseModel):
    """One active session as listed to its owner."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    device_info: str | None = None
    ip_address: str | None = None
    created_at: datetime
    expires_at: datetime


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse] = Field(default_factory=list)


class LockPayload(BaseModel):
    """Optional body for POST /admin/users/{id}/lock."""

    minutes: float | None = Field(default=None, gt=0)


class LockResponse(BaseModel):
    user_id: str
    locked_until: datetime


class UnlockResponse(BaseModel):
    user_id: str
    unlocked: bool = True


class ErrorResponse(BaseModel):
    """Body of every auth failure response."""

    error: str
    error_description: str
    locked_until: datetime | None = None
    remaining_attempts: int | None = None
