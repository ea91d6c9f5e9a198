"""Tests for the file-backed key store."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography.fernet import Fernet

from authcore.crypto.key_store import ACTIVE_POINTER, FileKeyStore
from authcore.crypto.keys import generate_rsa_keypair
from authcore.crypto.types import SigningKeyData

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _key(created_at: datetime = T0, *, active: bool = True) -> SigningKeyData:
    key = generate_rsa_keypair(created_at=created_at, lifetime=timedelta(days=90))
    key.is_active = active
    return key


class TestFileKeyStore:
    """Tests for FileKeyStore."""

    async def test_put_and_get(self, tmp_path: Path, fernet_key: str) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        key = _key()
        await store.put(key)

        loaded = await store.get(key.kid)
        assert loaded is not None
        assert loaded.private_key_pem == key.private_key_pem
        assert loaded.expires_at == key.expires_at
        assert loaded.is_active is True

    async def test_private_material_encrypted_on_disk(
        self, tmp_path: Path, fernet_key: str
    ) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        key = _key()
        await store.put(key)
        raw = (tmp_path / f"{key.kid}.key").read_bytes()
        assert b"PRIVATE KEY" not in raw

    async def test_new_active_key_demotes_previous(
        self, tmp_path: Path, fernet_key: str
    ) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        old = _key(T0)
        new = _key(T0 + timedelta(days=1))
        await store.put(old)
        await store.put(new)

        active = await store.get_active()
        assert active is not None
        assert active.kid == new.kid
        demoted = await store.get(old.kid)
        assert demoted is not None
        assert demoted.is_active is False
        assert (tmp_path / ACTIVE_POINTER).read_text() == new.kid

    async def test_inactive_put_keeps_pointer(self, tmp_path: Path, fernet_key: str) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        active = _key()
        await store.put(active)
        await store.put(_key(active=False))
        current = await store.get_active()
        assert current is not None
        assert current.kid == active.kid

    async def test_list_keys_newest_first(self, tmp_path: Path, fernet_key: str) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        first = _key(T0)
        second = _key(T0 + timedelta(hours=1))
        await store.put(first)
        await store.put(second)
        assert [k.kid for k in await store.list_keys()] == [second.kid, first.kid]

    async def test_empty_store(self, tmp_path: Path, fernet_key: str) -> None:
        store = FileKeyStore(tmp_path / "keys", fernet_key)
        assert await store.get_active() is None
        assert await store.get("missing") is None
        assert await store.list_keys() == []

    async def test_wrong_encryption_key_reads_as_missing(
        self, tmp_path: Path, fernet_key: str
    ) -> None:
        key = _key()
        await FileKeyStore(tmp_path, fernet_key).put(key)
        other = FileKeyStore(tmp_path, Fernet.generate_key().decode())
        assert await other.get(key.kid) is None

    async def test_path_like_kid_rejected(self, tmp_path: Path, fernet_key: str) -> None:
        store = FileKeyStore(tmp_path, fernet_key)
        assert await store.get("../etc/passwd") is None
