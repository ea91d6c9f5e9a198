"""Durable per-account lockout after repeated credential failures.

Lock state lives on the user record and expires lazily: an account whose
``lockout_end`` has passed is unlocked even though ``is_locked`` may still be
stored as true. Counter updates are plain read-modify-write; a lost update
under concurrent failures for one account is tolerated.
"""

from datetime import datetime, timedelta

from authcore.auth.types import LockState, UserDirectory
from authcore.core.clock import Clock, utc_now
from authcore.core.errors import UserNotFoundError
from authcore.core.logging import get_logger

logger = get_logger(__name__)


class LockoutGuard:
    def __init__(
        self,
        users: UserDirectory,
        *,
        threshold: int,
        duration: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._users = users
        self._threshold = threshold
        self._duration = duration
        self._clock = clock

    async def _state(self, user_id: str) -> LockState:
        state = await self._users.get_lock_state(user_id)
        if state is None:
            raise UserNotFoundError(user_id)
        return state

    async def record_failure(self, user_id: str) -> LockState:
        """Count a failed credential check, locking at the threshold."""
        now = self._clock()
        state = await self._state(user_id)
        state.failed_attempts += 1
        state.last_attempt_at = now
        if state.failed_attempts >= self._threshold:
            state.is_locked = True
            state.lockout_end = now + self._duration
            logger.warning(
                "account_locked",
                user_id=user_id,
                failed_attempts=state.failed_attempts,
                lockout_end=state.lockout_end.isoformat(),
            )
        await self._users.save_lock_state(user_id, state)
        return state

    async def record_success(self, user_id: str) -> None:
        """Reset the counter and clear any lock fields."""
        await self._users.save_lock_state(
            user_id, LockState(last_attempt_at=self._clock())
        )

    async def locked_until(self, user_id: str) -> datetime | None:
        """``lockout_end`` while the lock is in force, else ``None``."""
        state = await self._state(user_id)
        if state.locked_at(self._clock()):
            return state.lockout_end
        return None

    async def is_locked(self, user_id: str) -> bool:
        return await self.locked_until(user_id) is not None

    async def lock(self, user_id: str, duration: timedelta | None = None) -> datetime:
        """Administrative lock, independent of the failure counter."""
        state = await self._state(user_id)
        state.is_locked = True
        state.lockout_end = self._clock() + (duration or self._duration)
        await self._users.save_lock_state(user_id, state)
        logger.info("account_locked_manually", user_id=user_id)
        return state.lockout_end

    async def unlock(self, user_id: str) -> None:
        """Administrative unlock; also clears the failure counter."""
        await self._state(user_id)
        await self._users.save_lock_state(user_id, LockState())
        logger.info("account_unlocked", user_id=user_id)
