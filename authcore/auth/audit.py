"""Audit event sinks."""

from enum import StrEnum
from typing import Protocol

import uuid_utils
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.clock import Clock, utc_now
from authcore.core.logging import get_logger
from authcore.db.models_audit import AuditLogEntity

logger = get_logger(__name__)


class AuditEvent(StrEnum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_RATE_LIMITED = "LOGIN_RATE_LIMITED"
    LOGIN_MFA_REQUIRED = "LOGIN_MFA_REQUIRED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    TOKEN_REFRESH_SUCCESS = "TOKEN_REFRESH_SUCCESS"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    LOGOUT_SUCCESS = "LOGOUT_SUCCESS"
    LOGOUT_FAILED = "LOGOUT_FAILED"
    LOGOUT_ALL_SUCCESS = "LOGOUT_ALL_SUCCESS"
    LOGOUT_ALL_FAILED = "LOGOUT_ALL_FAILED"
    KEY_ROTATED = "KEY_ROTATED"


class AuditSink(Protocol):
    async def emit(
        self,
        event_type: AuditEvent,
        *,
        user_id: str | None = None,
        identity: str | None = None,
        ip_address: str | None = None,
        details: str | None = None,
    ) -> None: ...


class LogAuditSink:
    """Writes audit events to the structured log."""

    def __init__(self) -> None:
        self._log = get_logger("authcore.audit")

    async def emit(
        self,
        event_type: AuditEvent,
        *,
        user_id: str | None = None,
        identity: str | None = None,
        ip_address: str | None = None,
        details: str | None = None,
    ) -> None:
        self._log.info(
            "audit_event",
            event_type=event_type.value,
            user_id=user_id,
            identity=identity,
            ip_address=ip_address,
            details=details,
        )


class SqlAuditSink:
    """Persists audit events to ``audit_logs``."""

    def __init__(
        self, factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now
    ) -> None:
        self._factory = factory
        self._clock = clock

    async def emit(
        self,
        event_type: AuditEvent,
        *,
        user_id: str | None = None,
        identity: str | None = None,
        ip_address: str | None = None,
        details: str | None = None,
    ) -> None:
        async with self._factory() as session, session.begin():
            session.add(
                AuditLogEntity(
                    id=str(uuid_utils.uuid7()),
                    event_type=event_type.value,
                    user_id=user_id,
                    username=identity,
                    ip_address=ip_address,
                    details=details,
                    timestamp=self._clock(),
                )
            )


class SafeAudit:
    """Fire-and-forget wrapper: sink failures are logged, never raised."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def __call__(
        self,
        event_type: AuditEvent,
        *,
        user_id: str | None = None,
        identity: str | None = None,
        ip_address: str | None = None,
        details: str | None = None,
    ) -> None:
        try:
            await self._sink.emit(
                event_type,
                user_id=user_id,
                identity=identity,
                ip_address=ip_address,
                details=details,
            )
        except Exception:
            logger.exception("audit_emit_failed", event_type=event_type.value)
