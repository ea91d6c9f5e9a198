"""Session store: the single source of truth for refresh-token liveness."""

from datetime import timedelta

import uuid_utils
from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.clock import Clock, utc_now
from authcore.core.errors import SessionNotFoundError
from authcore.core.logging import get_logger
from authcore.db.models_session import SessionEntity

logger = get_logger(__name__)

DEVICE_INFO_MAX = 500
IP_ADDRESS_MAX = 45


def _clip(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else value


class SessionStore:
    """CRUD over ``active_sessions``; each call runs in its own transaction."""

    def __init__(
        self,
        factory: async_sessionmaker[AsyncSession],
        *,
        refresh_ttl: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        self._factory = factory
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    def _new_entity(
        self,
        user_id: str,
        jti: str,
        device_info: str | None,
        ip_address: str | None,
    ) -> SessionEntity:
        now = self._clock()
        return SessionEntity(
            session_id=str(uuid_utils.uuid7()),
            user_id=user_id,
            refresh_token_jti=jti,
            device_info=_clip(device_info, DEVICE_INFO_MAX),
            ip_address=_clip(ip_address, IP_ADDRESS_MAX),
            created_at=now,
            expires_at=now + self._refresh_ttl,
        )

    async def create(
        self,
        user_id: str,
        jti: str,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SessionEntity:
        """Insert a session expiring one refresh TTL from now."""
        entity = self._new_entity(user_id, jti, device_info, ip_address)
        async with self._factory() as session, session.begin():
            session.add(entity)
        logger.debug("session_created", user_id=user_id, jti=jti)
        return entity

    async def get_by_jti(self, jti: str) -> SessionEntity | None:
        async with self._factory() as session:
            result = await session.execute(
                select(SessionEntity).where(SessionEntity.refresh_token_jti == jti)
            )
            return result.scalar_one_or_none()

    async def is_active(self, jti: str) -> bool:
        """True iff a row for ``jti`` exists and has not expired."""
        stmt = select(
            exists().where(
                SessionEntity.refresh_token_jti == jti,
                SessionEntity.expires_at > self._clock(),
            )
        )
        async with self._factory() as session:
            return bool(await session.scalar(stmt))

    async def revoke(self, jti: str) -> None:
        """Delete the session for ``jti``; unknown jtis are a no-op."""
        async with self._factory() as session, session.begin():
            await session.execute(
                delete(SessionEntity).where(SessionEntity.refresh_token_jti == jti)
            )
        logger.debug("session_revoked", jti=jti)

    async def revoke_all(self, user_id: str) -> int:
        """Delete every session of ``user_id`` in one statement."""
        async with self._factory() as session, session.begin():
            result = await session.execute(
                delete(SessionEntity).where(SessionEntity.user_id == user_id)
            )
        count = result.rowcount or 0
        logger.info("sessions_revoked_for_user", user_id=user_id, count=count)
        return count

    async def list_active(self, user_id: str) -> list[SessionEntity]:
        """Unexpired sessions for ``user_id``, newest first."""
        stmt = (
            select(SessionEntity)
            .where(
                SessionEntity.user_id == user_id,
                SessionEntity.expires_at > self._clock(),
            )
            .order_by(SessionEntity.created_at.desc(), SessionEntity.session_id.desc())
        )
        async with self._factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def sweep_expired(self) -> int:
        """Delete every session with ``expires_at <= now``."""
        async with self._factory() as session, session.begin():
            result = await session.execute(
                delete(SessionEntity).where(SessionEntity.expires_at <= self._clock())
            )
        count = result.rowcount or 0
        logger.info("expired_sessions_swept", count=count)
        return count

    async def rotate(
        self,
        old_jti: str,
        *,
        user_id: str,
        new_jti: str,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SessionEntity:
        """Replace the live session ``old_jti`` with one for ``new_jti``.

        Delete and insert share a transaction, delete first. If the old row
        is already gone (redeemed concurrently, revoked, or expired) nothing
        is written and ``SessionNotFoundError`` is raised.
        """
        entity = self._new_entity(user_id, new_jti, device_info, ip_address)
        async with self._factory() as session, session.begin():
            result = await session.execute(
                delete(SessionEntity).where(
                    SessionEntity.refresh_token_jti == old_jti,
                    SessionEntity.user_id == user_id,
                    SessionEntity.expires_at > self._clock(),
                )
            )
            if not result.rowcount:
                logger.info("session_rotation_lost", jti=old_jti, user_id=user_id)
                raise SessionNotFoundError()
            session.add(entity)
        logger.debug("session_rotated", old_jti=old_jti, new_jti=new_jti)
        return entity
