"""Encrypted-at-rest storage backends for signing keys."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from authcore.core.logging import get_logger
from authcore.crypto.types import SigningKeyData

logger = get_logger(__name__)

ACTIVE_POINTER = "ACTIVE"
KEY_SUFFIX = ".key"


class KeyStore(Protocol):
    """Durable keypair storage keyed by kid.

    ``put`` of a key with ``is_active=True`` must demote every other key in
    the same atomic step: afterwards either the new key is stored and active,
    or nothing changed.
    """

    async def put(self, key: SigningKeyData) -> None: ...

    async def get(self, kid: str) -> SigningKeyData | None: ...

    async def get_active(self) -> SigningKeyData | None: ...

    async def list_keys(self) -> list[SigningKeyData]: ...


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileKeyStore:
    """One Fernet-encrypted JSON document per key plus an ``ACTIVE`` pointer.

    Activation is a single ``os.replace`` of the pointer file, so a crash
    between writing a new key and activating it leaves the old key active.
    """

    def __init__(self, directory: str | Path, fernet_key: str) -> None:
        self._dir = Path(directory)
        self._cipher = Fernet(fernet_key.encode())
        self._dir.mkdir(parents=True, exist_ok=True)

    def _key_path(self, kid: str) -> Path:
        if not kid or "/" in kid or "\\" in kid or kid.startswith("."):
            raise ValueError(f"invalid kid {kid!r}")
        return self._dir / f"{kid}{KEY_SUFFIX}"

    def _read_active_kid(self) -> str | None:
        pointer = self._dir / ACTIVE_POINTER
        if not pointer.exists():
            return None
        return pointer.read_text(encoding="utf-8").strip() or None

    def _read_key(self, kid: str, active_kid: str | None) -> SigningKeyData | None:
        try:
            path = self._key_path(kid)
        except ValueError:
            return None
        if not path.exists():
            return None
        try:
            raw = self._cipher.decrypt(path.read_bytes())
        except InvalidToken:
            logger.error("key_file_decrypt_failed", kid=kid, path=str(path))
            return None
        key = SigningKeyData.model_validate_json(raw)
        return key.model_copy(update={"is_active": kid == active_kid})

    def _put_sync(self, key: SigningKeyData) -> None:
        document = key.model_dump(mode="json", exclude={"is_active"})
        encrypted = self._cipher.encrypt(json.dumps(document).encode())
        _atomic_write(self._key_path(key.kid), encrypted)
        if key.is_active:
            _atomic_write(self._dir / ACTIVE_POINTER, key.kid.encode())
        logger.debug("key_stored", kid=key.kid, active=key.is_active)

    def _get_sync(self, kid: str) -> SigningKeyData | None:
        return self._read_key(kid, self._read_active_kid())

    def _get_active_sync(self) -> SigningKeyData | None:
        active_kid = self._read_active_kid()
        if active_kid is None:
            return None
        return self._read_key(active_kid, active_kid)

    def _list_sync(self) -> list[SigningKeyData]:
        active_kid = self._read_active_kid()
        keys = []
        for path in self._dir.glob(f"*{KEY_SUFFIX}"):
            key = self._read_key(path.name.removesuffix(KEY_SUFFIX), active_kid)
            if key is not None:
                keys.append(key)
        keys.sort(key=lambda k: k.created_at.timestamp() if k.created_at else 0.0, reverse=True)
        return keys

    async def put(self, key: SigningKeyData) -> None:
        await asyncio.to_thread(self._put_sync, key)

    async def get(self, kid: str) -> SigningKeyData | None:
        return await asyncio.to_thread(self._get_sync, kid)

    async def get_active(self) -> SigningKeyData | None:
        return await asyncio.to_thread(self._get_active_sync)

    async def list_keys(self) -> list[SigningKeyData]:
        return await asyncio.to_thread(self._list_sync)
