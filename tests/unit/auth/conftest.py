"""Fixtures wiring the auth workflows over the test database."""

from collections.abc import Callable
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.auth.service import AuthService
from authcore.core.settings import TokenSettings
from authcore.crypto.key_manager import KeyManager
from authcore.crypto.token_issuer import TokenIssuer
from authcore.db.repo_keys import SqlKeyStore
from authcore.db.repo_sessions import SessionStore
from authcore.db.repo_user import SqlUserDirectory
from authcore.security.attempt_cache import MemoryAttemptCache
from authcore.security.lockout import LockoutGuard
from authcore.security.rate_limiter import RateLimiter

ServiceFactory = Callable[..., AuthService]


@pytest.fixture
def token_settings() -> TokenSettings:
    return TokenSettings(
        issuer="https://auth.test",
        audience="authcore-tests",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60,
    )


@pytest.fixture
def key_manager(
    session_factory: async_sessionmaker[AsyncSession], fernet_key: str, clock
) -> KeyManager:
    return KeyManager(
        SqlKeyStore(session_factory, fernet_key),
        key_lifetime=timedelta(days=90),
        clock=clock,
    )


@pytest.fixture
def make_service(
    session_factory: async_sessionmaker[AsyncSession],
    token_settings: TokenSettings,
    key_manager: KeyManager,
    audit_sink,
    clock,
) -> ServiceFactory:
    """Build an AuthService; the rate limit defaults above the lockout threshold."""

    def _make(*, max_attempts: int = 20, lockout_threshold: int = 5) -> AuthService:
        users = SqlUserDirectory(session_factory, clock)
        return AuthService(
            users=users,
            issuer=TokenIssuer(token_settings, key_manager, clock=clock),
            sessions=SessionStore(
                session_factory, refresh_ttl=token_settings.refresh_ttl, clock=clock
            ),
            rate_limiter=RateLimiter(
                MemoryAttemptCache(clock),
                max_attempts=max_attempts,
                window=timedelta(minutes=15),
                entry_ttl=timedelta(minutes=20),
                clock=clock,
            ),
            lockout=LockoutGuard(
                users,
                threshold=lockout_threshold,
                duration=timedelta(minutes=30),
                clock=clock,
            ),
            audit=audit_sink,
            key_manager=key_manager,
            clock=clock,
        )

    return _make


@pytest.fixture
def service(make_service: ServiceFactory) -> AuthService:
    return make_service()
