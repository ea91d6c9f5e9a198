"""Shared test fixtures for authcore."""

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authcore.auth.audit import AuditEvent
from authcore.core.app import create_app
from authcore.core.settings import (
    AdminSettings,
    KeySettings,
    LockoutSettings,
    MaintenanceSettings,
    RateLimitSettings,
    ServiceSettings,
    TokenSettings,
)
from authcore.db.base import BaseEntity
from authcore.db.engine import create_session_factory
from authcore.db.models_audit import AuditLogEntity
from authcore.db.models_keys import SigningKeyEntity
from authcore.db.models_session import SessionEntity
from authcore.db.models_user import UserEntity
from authcore.db.repo_user import UserUpsertData, upsert_user

_registered = (AuditLogEntity, SessionEntity, SigningKeyEntity, UserEntity)

INTERNAL_TOKEN = "test-internal-token"


class FakeClock:
    """Manually advanced UTC clock; tests move time instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingAuditSink:
    """Collects emitted audit events for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[AuditEvent, dict[str, str | None]]] = []

    async def emit(
        self,
        event_type: AuditEvent,
        *,
        user_id: str | None = None,
        identity: str | None = None,
        ip_address: str | None = None,
        details: str | None = None,
    ) -> None:
        self.events.append(
            (
                event_type,
                {
                    "user_id": user_id,
                    "identity": identity,
                    "ip_address": ip_address,
                    "details": details,
                },
            )
        )

    def types(self) -> list[AuditEvent]:
        return [event for event, _ in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite so every store's own session sees the same data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authcore.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


SeedUser = Callable[..., Awaitable[UserEntity]]


@pytest.fixture
def seed_user(session_factory: async_sessionmaker[AsyncSession]) -> SeedUser:
    """Insert a user with a known password; keyword overrides are allowed."""

    async def _seed(
        username: str = "alice",
        *,
        email: str | None = None,
        password: str = "correct-horse",
        roles: list[str] | None = None,
        mfa_enabled: bool = False,
        user_id: str | None = None,
    ) -> UserEntity:
        data = UserUpsertData(
            username=username,
            email=email or f"{username}@example.com",
            user_id=user_id,
            name=username.title(),
            password=password,
            roles=roles or ["user"],
            mfa_enabled=mfa_enabled,
        )
        async with session_factory() as session, session.begin():
            return await upsert_user(session, data)

    return _seed


@pytest.fixture
def service_settings(fernet_key: str) -> ServiceSettings:
    """Defaults from the product, with the rate limit above the lockout threshold."""
    return ServiceSettings(
        tokens=TokenSettings(issuer="https://auth.test", audience="authcore-tests"),
        keys=KeySettings(backend="database", encryption_key=fernet_key),
        rate_limit=RateLimitSettings(max_attempts=20),
        lockout=LockoutSettings(threshold=5, duration_minutes=30),
        maintenance=MaintenanceSettings(enabled=False),
        admin=AdminSettings(internal_token=INTERNAL_TOKEN),
    )


@pytest.fixture
async def client(
    service_settings: ServiceSettings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> AsyncIterator[AsyncClient]:
    """httpx client against a fully wired app on the test database."""
    app = create_app(service_settings, session_factory=session_factory, clock=clock)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
