"""Per-identity sliding window of login attempts.

This is the soft layer in front of the durable lockout: read-modify-write
races may over- or under-count by one attempt and no locking is taken.
"""

from datetime import timedelta

from authcore.core.clock import Clock, utc_now
from authcore.core.logging import get_logger
from authcore.security.attempt_cache import AttemptCache, LoginAttempt

logger = get_logger(__name__)


def rate_limit_key(identity: str) -> str:
    return f"rate_limit:login:{identity.strip().lower()}"


class RateLimiter:
    """Allows at most ``max_attempts`` attempts per identity per window."""

    def __init__(
        self,
        cache: AttemptCache,
        *,
        max_attempts: int,
        window: timedelta,
        entry_ttl: timedelta | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._cache = cache
        self._max = max_attempts
        self._window = window
        self._entry_ttl = entry_ttl if entry_ttl is not None else window
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._max

    @property
    def window(self) -> timedelta:
        return self._window

    async def _recent(self, identity: str) -> list[LoginAttempt]:
        attempts = await self._cache.get(rate_limit_key(identity)) or []
        cutoff = self._clock().timestamp() - self._window.total_seconds()
        return [a for a in attempts if a.at >= cutoff]

    async def allowed(self, identity: str) -> bool:
        """True while fewer than ``max_attempts`` fall inside the window."""
        return len(await self._recent(identity)) < self._max

    async def record(
        self, identity: str, success: bool, ip_address: str | None = None
    ) -> None:
        """Append an attempt; successes count too."""
        attempts = await self._recent(identity)
        attempts.append(
            LoginAttempt(
                at=self._clock().timestamp(),
                successful=success,
                ip_address=ip_address,
            )
        )
        await self._cache.set(rate_limit_key(identity), attempts, self._entry_ttl)
        if len(attempts) >= self._max:
            logger.info("rate_limit_reached", identity=identity, attempts=len(attempts))

    async def remaining_attempts(self, identity: str) -> int:
        return max(0, self._max - len(await self._recent(identity)))
