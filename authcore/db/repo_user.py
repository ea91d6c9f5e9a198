"""User repository and the SQL-backed user directory."""

import uuid_utils
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.auth.types import LockState, UserAccount
from authcore.core.clock import Clock, as_utc, utc_now
from authcore.crypto.password import check_password, hash_password, needs_rehash
from authcore.db.models_user import UserEntity


class UserUpsertData(BaseModel):
    """Parameters for creating or updating a user."""

    username: str
    email: str
    user_id: str | None = None
    name: str | None = None
    password: str | None = None
    roles: list[str] | None = None
    tenant_id: str | None = None
    mfa_enabled: bool | None = None


async def get_user_by_identity(
    session: AsyncSession, identity: str
) -> UserEntity | None:
    """Look up a user by username or email (case-insensitive)."""
    needle = identity.strip().lower()
    stmt = select(UserEntity).where(
        or_(UserEntity.username == needle, UserEntity.email == needle),
        UserEntity.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_user_by_id(session: AsyncSession, user_id: str) -> UserEntity | None:
    """Look up an active user by primary key."""
    stmt = select(UserEntity).where(
        UserEntity.id == user_id, UserEntity.is_active.is_(True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_user(session: AsyncSession, data: UserUpsertData) -> UserEntity:
    """Create a user if none exists for this username, otherwise update."""
    result = await session.execute(
        select(UserEntity).where(UserEntity.username == data.username.lower())
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        if data.name is not None:
            existing.name = data.name
        if data.password is not None:
            existing.password_hash = hash_password(data.password)
        if data.roles is not None:
            existing.roles = data.roles
        if data.tenant_id is not None:
            existing.tenant_id = data.tenant_id
        if data.mfa_enabled is not None:
            existing.mfa_enabled = data.mfa_enabled
        await session.flush()
        return existing

    user = UserEntity(
        id=data.user_id or str(uuid_utils.uuid7()),
        username=data.username.lower(),
        email=data.email.lower(),
        name=data.name,
        password_hash=hash_password(data.password) if data.password else None,
        roles=data.roles or ["user"],
        tenant_id=data.tenant_id,
        mfa_enabled=bool(data.mfa_enabled),
        failed_login_attempts=0,
        is_locked=False,
        login_count=0,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


def _lock_state(entity: UserEntity) -> LockState:
    return LockState(
        failed_attempts=entity.failed_login_attempts or 0,
        last_attempt_at=as_utc(entity.last_login_attempt)
        if entity.last_login_attempt
        else None,
        is_locked=entity.is_locked,
        lockout_end=as_utc(entity.lockout_end) if entity.lockout_end else None,
    )


def _to_account(entity: UserEntity) -> UserAccount:
    return UserAccount(
        id=entity.id,
        username=entity.username,
        email=entity.email,
        name=entity.name,
        roles=list(entity.roles or []),
        mfa_enabled=entity.mfa_enabled,
        password_hash=entity.password_hash,
    )


class SqlUserDirectory:
    """UserDirectory over the ``users`` table."""

    def __init__(
        self, factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now
    ) -> None:
        self._factory = factory
        self._clock = clock

    async def find_by_identity(self, identity: str) -> UserAccount | None:
        async with self._factory() as session:
            entity = await get_user_by_identity(session, identity)
            return _to_account(entity) if entity is not None else None

    async def find_by_id(self, user_id: str) -> UserAccount | None:
        async with self._factory() as session:
            entity = await get_user_by_id(session, user_id)
            return _to_account(entity) if entity is not None else None

    async def verify_password(self, user: UserAccount, secret: str) -> bool:
        """Check ``secret``; on success bump login stats and upgrade stale hashes."""
        if not await check_password(secret, user.password_hash):
            return False
        async with self._factory() as session, session.begin():
            entity = await session.get(UserEntity, user.id)
            if entity is not None:
                entity.login_count = (entity.login_count or 0) + 1
                entity.last_login = self._clock()
                if entity.password_hash and needs_rehash(entity.password_hash):
                    entity.password_hash = hash_password(secret)
        return True

    async def get_lock_state(self, user_id: str) -> LockState | None:
        async with self._factory() as session:
            entity = await session.get(UserEntity, user_id)
            return _lock_state(entity) if entity is not None else None

    async def save_lock_state(self, user_id: str, state: LockState) -> None:
        async with self._factory() as session, session.begin():
            entity = await session.get(UserEntity, user_id)
            if entity is None:
                return
            entity.failed_login_attempts = state.failed_attempts
            entity.last_login_attempt = state.last_attempt_at
            entity.is_locked = state.is_locked
            entity.lockout_end = state.lockout_end
