"""Key-value stores with per-entry TTL for login attempt windows."""

from datetime import timedelta
from typing import Protocol

from pydantic import BaseModel, TypeAdapter
from redis.asyncio import Redis

from authcore.core.clock import Clock, utc_now

PURGE_INTERVAL_SECONDS = 60.0


class LoginAttempt(BaseModel):
    """One recorded login attempt."""

    at: float
    successful: bool = False
    ip_address: str | None = None


_attempts_adapter = TypeAdapter(list[LoginAttempt])


class AttemptCache(Protocol):
    async def get(self, key: str) -> list[LoginAttempt] | None: ...

    async def set(self, key: str, attempts: list[LoginAttempt], ttl: timedelta) -> None: ...


class MemoryAttemptCache:
    """Process-local cache; entries vanish once their TTL passes on ``clock``."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, list[LoginAttempt]]] = {}
        self._next_purge = 0.0

    async def get(self, key: str) -> list[LoginAttempt] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, attempts = entry
        if self._clock().timestamp() >= expires_at:
            self._entries.pop(key, None)
            return None
        return list(attempts)

    async def set(self, key: str, attempts: list[LoginAttempt], ttl: timedelta) -> None:
        now = self._clock().timestamp()
        if now >= self._next_purge:
            self._purge(now)
        self._entries[key] = (now + ttl.total_seconds(), list(attempts))

    def _purge(self, now: float) -> None:
        """Drop entries whose TTL passed, including keys never read again."""
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_purge = now + PURGE_INTERVAL_SECONDS

    def __len__(self) -> int:
        return len(self._entries)


class RedisAttemptCache:
    """Shared cache for multi-instance deployments; Redis enforces the TTL."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 5.0) -> "RedisAttemptCache":
        return cls(Redis.from_url(url, socket_timeout=socket_timeout))

    async def get(self, key: str) -> list[LoginAttempt] | None:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return _attempts_adapter.validate_json(raw)

    async def set(self, key: str, attempts: list[LoginAttempt], ttl: timedelta) -> None:
        payload = _attempts_adapter.dump_json(attempts)
        await self._client.set(key, payload, px=max(1, int(ttl.total_seconds() * 1000)))

    async def close(self) -> None:
        await self._client.aclose()
