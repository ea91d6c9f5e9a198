"""Assemble the auth service and its collaborators from settings."""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.auth.audit import AuditSink, LogAuditSink, SqlAuditSink
from authcore.auth.scheduler import MaintenanceScheduler, Sleep
from authcore.auth.service import AuthService
from authcore.core.clock import Clock, utc_now
from authcore.core.logging import get_logger
from authcore.core.settings import (
    KeySettings,
    LogSettings,
    RateLimitSettings,
    ServiceSettings,
)
from authcore.crypto.key_manager import KeyManager
from authcore.crypto.key_store import FileKeyStore, KeyStore
from authcore.crypto.token_issuer import TokenIssuer
from authcore.db.repo_keys import SqlKeyStore
from authcore.db.repo_sessions import SessionStore
from authcore.db.repo_user import SqlUserDirectory
from authcore.security.attempt_cache import (
    AttemptCache,
    MemoryAttemptCache,
    RedisAttemptCache,
)
from authcore.security.lockout import LockoutGuard
from authcore.security.rate_limiter import RateLimiter

logger = get_logger(__name__)


def build_key_store(
    keys: KeySettings, factory: async_sessionmaker[AsyncSession]
) -> KeyStore | None:
    """``None`` means no managed keys: the issuer signs with its bootstrap key."""
    if keys.backend == "none":
        return None
    if not keys.encryption_key:
        raise ValueError("AUTH_KEYS_ENCRYPTION_KEY is required for managed signing keys")
    if keys.backend == "database":
        return SqlKeyStore(factory, keys.encryption_key)
    if keys.backend == "file":
        return FileKeyStore(keys.storage_path, keys.encryption_key)
    raise ValueError(f"Unknown key backend: {keys.backend}")


def build_attempt_cache(rate: RateLimitSettings, clock: Clock) -> AttemptCache:
    if rate.backend == "memory":
        return MemoryAttemptCache(clock)
    if rate.backend == "redis":
        return RedisAttemptCache.from_url(rate.redis_url)
    raise ValueError(f"Unknown rate limit backend: {rate.backend}")


def build_audit_sink(
    log: LogSettings, factory: async_sessionmaker[AsyncSession], clock: Clock
) -> AuditSink:
    if log.audit_sink == "log":
        return LogAuditSink()
    if log.audit_sink == "database":
        return SqlAuditSink(factory, clock)
    raise ValueError(f"Unknown audit sink: {log.audit_sink}")


class AuthContainer:
    """The wired service plus the resources that need closing."""

    def __init__(
        self,
        service: AuthService,
        scheduler: MaintenanceScheduler,
        attempt_cache: AttemptCache,
    ) -> None:
        self.service = service
        self.scheduler = scheduler
        self.attempt_cache = attempt_cache

    async def aclose(self) -> None:
        await self.scheduler.stop()
        if isinstance(self.attempt_cache, RedisAttemptCache):
            await self.attempt_cache.close()


def build_container(
    factory: async_sessionmaker[AsyncSession],
    settings: ServiceSettings,
    *,
    clock: Clock = utc_now,
    sleep: Sleep = asyncio.sleep,
) -> AuthContainer:
    store = build_key_store(settings.keys, factory)
    key_manager = None
    if store is not None:
        key_manager = KeyManager(
            store,
            key_lifetime=settings.keys.lifetime,
            rotation_threshold=settings.keys.rotation_threshold,
            clock=clock,
        )
    issuer = TokenIssuer(settings.tokens, key_manager, clock=clock)

    users = SqlUserDirectory(factory, clock)
    sessions = SessionStore(factory, refresh_ttl=settings.tokens.refresh_ttl, clock=clock)
    attempt_cache = build_attempt_cache(settings.rate_limit, clock)
    rate_limiter = RateLimiter(
        attempt_cache,
        max_attempts=settings.rate_limit.max_attempts,
        window=settings.rate_limit.window,
        entry_ttl=settings.rate_limit.entry_ttl,
        clock=clock,
    )
    lockout = LockoutGuard(
        users,
        threshold=settings.lockout.threshold,
        duration=settings.lockout.duration,
        clock=clock,
    )
    audit = build_audit_sink(settings.log, factory, clock)

    service = AuthService(
        users=users,
        issuer=issuer,
        sessions=sessions,
        rate_limiter=rate_limiter,
        lockout=lockout,
        audit=audit,
        key_manager=key_manager,
        clock=clock,
    )
    maintenance = settings.maintenance
    scheduler = MaintenanceScheduler(
        sessions,
        key_manager,
        sweep_interval=timedelta(seconds=maintenance.sweep_interval_seconds),
        rotation_interval=timedelta(seconds=maintenance.rotation_check_interval_seconds),
        failure_backoff=timedelta(seconds=maintenance.failure_backoff_seconds),
        audit=audit,
        clock=clock,
        sleep=sleep,
    )
    logger.info(
        "auth_container_built",
        key_backend=settings.keys.backend,
        rate_limit_backend=settings.rate_limit.backend,
        audit_sink=settings.log.audit_sink,
    )
    return AuthContainer(service, scheduler, attempt_cache)
