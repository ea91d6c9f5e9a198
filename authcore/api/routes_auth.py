"""Login, refresh, verification and logout endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request, status
from starlette.responses import JSONResponse

from authcore.api.deps import Claims, Service, request_context
from authcore.api.schemas import (
    LoginPayload,
    LogoutAllResponse,
    LogoutPayload,
    LogoutResponse,
    MfaChallengeResponse,
    RefreshPayload,
    SessionListResponse,
    SessionResponse,
    TokenPairResponse,
    VerifyPayload,
    VerifyResponse,
)
from authcore.auth.types import ChallengeRequired
from authcore.core.errors import AccountLockedError, TokenInvalidError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=None)
async def login(
    payload: LoginPayload,
    request: Request,
    service: Service,
) -> TokenPairResponse | JSONResponse:
    """POST /auth/login -- exchange credentials for a token pair."""
    result = await service.login(
        payload.identity,
        payload.password,
        request_context(request, payload.device_info),
    )
    if isinstance(result, ChallengeRequired):
        body = MfaChallengeResponse(user_id=result.user_id, challenge=result.challenge)
        return JSONResponse(body.model_dump(), status_code=status.HTTP_202_ACCEPTED)
    return TokenPairResponse.model_validate(result, from_attributes=True)


@router.post("/refresh")
async def refresh(
    payload: RefreshPayload,
    request: Request,
    service: Service,
) -> TokenPairResponse:
    """POST /auth/refresh -- redeem a refresh token, once."""
    pair = await service.refresh(
        payload.refresh_token, request_context(request, payload.device_info)
    )
    return TokenPairResponse.model_validate(pair, from_attributes=True)


@router.post("/verify")
async def verify(payload: VerifyPayload, service: Service) -> VerifyResponse:
    """POST /auth/verify -- check an access token for a resource server."""
    try:
        claims = await service.verify_access_token(payload.access_token)
    except TokenInvalidError:
        return VerifyResponse(valid=False, reason="invalid_token")
    except AccountLockedError:
        return VerifyResponse(valid=False, reason="account_locked")
    return VerifyResponse(
        valid=True,
        user_id=claims.sub,
        roles=claims.roles,
        expires_at=datetime.fromtimestamp(claims.exp, UTC),
    )


@router.post("/logout")
async def logout(
    payload: LogoutPayload,
    request: Request,
    service: Service,
) -> LogoutResponse:
    """POST /auth/logout -- end the session behind a refresh token."""
    await service.logout(payload.refresh_token, request_context(request))
    return LogoutResponse()


@router.post("/logout-all")
async def logout_all(
    request: Request,
    claims: Claims,
    service: Service,
) -> LogoutAllResponse:
    """POST /auth/logout-all -- end every session of the calling user."""
    count = await service.logout_all(claims.sub, request_context(request))
    return LogoutAllResponse(sessions_terminated=count)


@router.get("/sessions")
async def list_sessions(claims: Claims, service: Service) -> SessionListResponse:
    """GET /auth/sessions -- active sessions of the calling user, newest first."""
    sessions = await service.list_sessions(claims.sub)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions]
    )
