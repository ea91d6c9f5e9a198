"""Internal-token protected account administration."""

from datetime import timedelta

from fastapi import APIRouter

from authcore.api.deps import InternalToken, Service
from authcore.api.schemas import LockPayload, LockResponse, UnlockResponse

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/users/{user_id}/lock")
async def lock_user(
    user_id: str,
    service: Service,
    _token: InternalToken,
    payload: LockPayload | None = None,
) -> LockResponse:
    """POST /admin/users/{id}/lock -- lock for ``minutes`` or the default duration."""
    duration = None
    if payload is not None and payload.minutes is not None:
        duration = timedelta(minutes=payload.minutes)
    until = await service.lock_account(user_id, duration)
    return LockResponse(user_id=user_id, locked_until=until)


@router.post("/users/{user_id}/unlock")
async def unlock_user(
    user_id: str,
    service: Service,
    _token: InternalToken,
) -> UnlockResponse:
    """POST /admin/users/{id}/unlock -- clear the lock and the failure counter."""
    await service.unlock_account(user_id)
    return UnlockResponse(user_id=user_id)
