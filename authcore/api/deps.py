"""FastAPI dependencies: the wired service, caller identity, admin auth."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authcore.auth.service import AuthService
from authcore.auth.types import RequestContext
from authcore.core.container import AuthContainer
from authcore.core.settings import AdminSettings
from authcore.crypto.types import TokenPayload

_security = HTTPBearer()


def get_container(request: Request) -> AuthContainer:
    return request.app.state.container


def get_auth_service(
    container: Annotated[AuthContainer, Depends(get_container)],
) -> AuthService:
    return container.service


def get_admin_settings(request: Request) -> AdminSettings:
    return request.app.state.settings.admin


def request_context(request: Request, device_info: str | None = None) -> RequestContext:
    """Client address from the connection; user agent when no device is named."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        device_info=device_info or request.headers.get("User-Agent"),
    )


async def current_claims(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_security)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenPayload:
    """Claims of a valid access token whose user exists and is not locked."""
    return await service.verify_access_token(credentials.credentials)


async def require_internal_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_security)],
    settings: Annotated[AdminSettings, Depends(get_admin_settings)],
) -> str:
    """Verify the AUTH_ADMIN_INTERNAL_TOKEN Bearer token."""
    expected = settings.internal_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials


Service = Annotated[AuthService, Depends(get_auth_service)]
Claims = Annotated[TokenPayload, Depends(current_claims)]
InternalToken = Annotated[str, Depends(require_internal_token)]
