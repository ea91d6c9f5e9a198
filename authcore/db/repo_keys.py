"""Database operations for signing key management."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.clock import as_utc
from authcore.core.logging import get_logger
from authcore.crypto.keys import decrypt_private_key, encrypt_private_key
from authcore.crypto.types import SigningKeyData
from authcore.db.models_keys import SigningKeyEntity

logger = get_logger(__name__)


async def get_active_key(
    session: AsyncSession,
) -> SigningKeyEntity | None:
    """Return the currently active signing key (newest if several)."""
    stmt = (
        select(SigningKeyEntity)
        .where(SigningKeyEntity.is_active.is_(True))
        .order_by(SigningKeyEntity.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_key(session: AsyncSession, kid: str) -> SigningKeyEntity | None:
    """Look up a signing key by kid regardless of state."""
    result = await session.execute(
        select(SigningKeyEntity).where(SigningKeyEntity.kid == kid)
    )
    return result.scalar_one_or_none()


async def get_all_keys(
    session: AsyncSession,
) -> list[SigningKeyEntity]:
    """Return all signing keys (active + rotated), newest first."""
    stmt = select(SigningKeyEntity).order_by(SigningKeyEntity.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def store_key(
    session: AsyncSession, entity: SigningKeyEntity
) -> SigningKeyEntity:
    """Persist a new signing key."""
    session.add(entity)
    await session.flush()
    return entity


async def deactivate_all(session: AsyncSession, rotated_at: datetime) -> None:
    """Mark all existing keys as inactive (pre-rotation)."""
    stmt = (
        update(SigningKeyEntity)
        .where(SigningKeyEntity.is_active.is_(True))
        .values(is_active=False, rotated_at=rotated_at)
    )
    await session.execute(stmt)
    await session.flush()


class SqlKeyStore:
    """KeyStore backed by the ``signing_keys`` table."""

    def __init__(
        self, factory: async_sessionmaker[AsyncSession], fernet_key: str
    ) -> None:
        self._factory = factory
        self._fernet_key = fernet_key

    def _to_data(self, entity: SigningKeyEntity) -> SigningKeyData:
        return SigningKeyData(
            kid=entity.kid,
            private_key_pem=decrypt_private_key(
                entity.private_key_pem, self._fernet_key
            ),
            public_key_pem=entity.public_key_pem,
            created_at=as_utc(entity.created_at),
            expires_at=as_utc(entity.expires_at),
            is_active=entity.is_active,
        )

    async def put(self, key: SigningKeyData) -> None:
        """Insert ``key``; an active key demotes the others in one transaction."""
        if key.created_at is None or key.expires_at is None:
            raise ValueError("signing keys need created_at and expires_at")
        entity = SigningKeyEntity(
            kid=key.kid,
            algorithm="RS256",
            private_key_pem=encrypt_private_key(key.private_key_pem, self._fernet_key),
            public_key_pem=key.public_key_pem,
            is_active=key.is_active,
            created_at=key.created_at,
            expires_at=key.expires_at,
        )
        async with self._factory() as session, session.begin():
            if key.is_active:
                await deactivate_all(session, key.created_at)
            await store_key(session, entity)
        logger.debug("key_stored", kid=key.kid, active=key.is_active)

    async def get(self, kid: str) -> SigningKeyData | None:
        async with self._factory() as session:
            entity = await get_key(session, kid)
            return self._to_data(entity) if entity is not None else None

    async def get_active(self) -> SigningKeyData | None:
        async with self._factory() as session:
            entity = await get_active_key(session)
            return self._to_data(entity) if entity is not None else None

    async def list_keys(self) -> list[SigningKeyData]:
        async with self._factory() as session:
            return [self._to_data(e) for e in await get_all_keys(session)]
