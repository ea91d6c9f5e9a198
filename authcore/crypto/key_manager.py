"""Signing key lifecycle: bootstrap, rotation, and verification lookup.

One key is active at a time and signs every new token. Rotation generates a
fresh keypair, stores it as active and demotes the previous key, which stays
usable for verification until its own ``expires_at``. Tokens signed just
before a rotation therefore keep validating through the overlap window.

Rotation is serialized by an ``asyncio.Lock`` owned by the manager. Each
completed rotation bumps a generation counter; a caller that queued behind
an in-flight rotation sees the counter move and returns the key that
rotation produced instead of rotating a second time.
"""

import asyncio
from datetime import timedelta

from authcore.core.clock import Clock, utc_now
from authcore.core.errors import InternalAuthError, KeyNotFoundError, RotationInProgressError
from authcore.core.logging import get_logger
from authcore.crypto.key_store import KeyStore
from authcore.crypto.keys import generate_rsa_keypair, pem_to_jwk_entry
from authcore.crypto.types import JWKSResponse, SigningKeyData

logger = get_logger(__name__)


class KeyManager:
    """Owns the active signing key and the set of verification keys."""

    def __init__(
        self,
        store: KeyStore,
        *,
        key_lifetime: timedelta,
        rotation_threshold: float = 0.75,
        clock: Clock = utc_now,
    ) -> None:
        if key_lifetime <= timedelta(0):
            raise ValueError("key_lifetime must be positive")
        if not 0 < rotation_threshold <= 1:
            raise ValueError("rotation_threshold must be in (0, 1]")
        self._store = store
        self._lifetime = key_lifetime
        self._threshold = rotation_threshold
        self._clock = clock
        self._rotation_lock = asyncio.Lock()
        self._generation = 0

    @property
    def rotating(self) -> bool:
        """True while a rotation holds the lock."""
        return self._rotation_lock.locked()

    def _is_unexpired(self, key: SigningKeyData) -> bool:
        return key.expires_at is not None and key.expires_at > self._clock()

    async def _load_active(self) -> SigningKeyData | None:
        active = await self._store.get_active()
        if active is None or not self._is_unexpired(active):
            return None
        return active

    async def current_signing_key(self) -> SigningKeyData:
        """Return the active key, bootstrapping one if none exists."""
        active = await self._load_active()
        if active is not None:
            return active

        async with self._rotation_lock:
            active = await self._load_active()
            if active is None:
                logger.info("signing_key_bootstrap")
                await self._rotate_locked()
                active = await self._load_active()
        if active is None:
            logger.error("signing_key_bootstrap_failed")
            raise InternalAuthError()
        return active

    async def verification_key(self, kid: str) -> SigningKeyData:
        """Return any stored, unexpired key for ``kid``."""
        key = await self._store.get(kid)
        if key is None or not self._is_unexpired(key):
            logger.warning("verification_key_unavailable", kid=kid)
            raise KeyNotFoundError(kid)
        return key

    async def valid_key_ids(self) -> list[str]:
        """Kids of every key still inside its validity period."""
        return [k.kid for k in await self._store.list_keys() if self._is_unexpired(k)]

    async def jwks(self) -> JWKSResponse:
        """Public halves of every verification-eligible key."""
        keys = [k for k in await self._store.list_keys() if self._is_unexpired(k)]
        return JWKSResponse(
            keys=[pem_to_jwk_entry(k.public_key_pem, k.kid) for k in keys]
        )

    async def should_rotate(self) -> bool:
        """True with no active key, or once its age exceeds the rotation threshold."""
        active = await self._load_active()
        if active is None:
            logger.info("rotation_needed", reason="no_active_key")
            return True
        assert active.created_at is not None
        due_at = active.created_at + self._lifetime * self._threshold
        if self._clock() > due_at:
            logger.info(
                "rotation_needed",
                reason="threshold_reached",
                kid=active.kid,
                created_at=active.created_at.isoformat(),
            )
            return True
        return False

    async def rotate(self) -> str:
        """Generate and activate a new key; concurrent callers share one rotation."""
        observed = self._generation
        async with self._rotation_lock:
            if self._generation != observed:
                active = await self._load_active()
                if active is not None:
                    logger.debug("rotation_joined", kid=active.kid)
                    return active.kid
            return await self._rotate_locked()

    async def try_rotate(self) -> str:
        """Rotate now, or raise ``RotationInProgressError`` if one is in flight."""
        if self._rotation_lock.locked():
            raise RotationInProgressError("rotation already in progress")
        return await self.rotate()

    async def rotate_if_needed(self) -> bool:
        """Rotate when ``should_rotate``; returns whether a rotation ran."""
        if not await self.should_rotate():
            return False
        try:
            await self.try_rotate()
        except RotationInProgressError:
            logger.debug("rotation_skipped_in_progress")
            return False
        return True

    async def _rotate_locked(self) -> str:
        now = self._clock()
        logger.info("key_rotation_started")
        try:
            keypair = await asyncio.to_thread(
                generate_rsa_keypair, created_at=now, lifetime=self._lifetime
            )
        except Exception as exc:
            logger.exception("key_generation_failed")
            raise InternalAuthError() from exc

        keypair.is_active = True
        try:
            await self._store.put(keypair)
        except Exception as exc:
            logger.exception("key_rotation_store_failed", kid=keypair.kid)
            raise InternalAuthError() from exc

        self._generation += 1
        logger.info("key_rotation_completed", kid=keypair.kid)
        return keypair.kid
