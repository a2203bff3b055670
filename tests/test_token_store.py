"""Tests for credential persistence."""

from __future__ import annotations

import asyncio
import json
import os
import stat
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from qbolink.errors import StoreError
from qbolink.models.credential import TenantCredential
from qbolink.storage import file as file_store
from qbolink.storage.file import FileKeyValueStore
from qbolink.storage.memory import MemoryKeyValueStore
from qbolink.storage.token_store import TokenStore, token_key


def _credential(tenant_id: str | None = "123", created: int = 0) -> TenantCredential:
    return TenantCredential(
        tenant_id=tenant_id,
        access_token="access",
        refresh_token="refresh",
        created_at_millis=created,
        expires_in_seconds=3600,
        refresh_expires_in_seconds=8726400,
    )


class _BrokenBackend:
    async def get(self, key: str) -> str | None:
        raise ConnectionError("store down")

    async def set(self, key: str, value: str) -> None:
        raise ConnectionError("store down")

    async def delete(self, key: str) -> bool:
        raise ConnectionError("store down")


class TestTokenKey:
    def test_tenant_key(self) -> None:
        assert token_key("123") == "quickbooks/token/123"

    def test_default_key(self) -> None:
        assert token_key(None) == "quickbooks/token/default"
        assert token_key("") == "quickbooks/token/default"


class TestTokenStore:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("tenant_id", ["123", "4620816365213515760", None])
    async def test_round_trip(self, tenant_id: str | None) -> None:
        store = TokenStore(MemoryKeyValueStore())
        record = _credential(tenant_id, created=42)
        await store.set(tenant_id, record)
        assert await store.get(tenant_id) == record

    @pytest.mark.asyncio
    async def test_missing_returns_none(self) -> None:
        store = TokenStore(MemoryKeyValueStore())
        assert await store.get("nobody") is None

    @pytest.mark.asyncio
    async def test_value_is_json(self) -> None:
        backend = MemoryKeyValueStore()
        store = TokenStore(backend)
        await store.set("123", _credential())
        raw = await backend.get("quickbooks/token/123")
        data = json.loads(raw)
        assert data["access_token"] == "access"
        assert data["created_at_millis"] == 0

    @pytest.mark.asyncio
    async def test_set_replaces_record(self) -> None:
        store = TokenStore(MemoryKeyValueStore())
        await store.set("123", _credential(created=1))
        await store.set("123", _credential(created=2))
        stored = await store.get("123")
        assert stored is not None
        assert stored.created_at_millis == 2

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        store = TokenStore(MemoryKeyValueStore())
        await store.set("123", _credential())
        assert await store.delete("123") is True
        assert await store.delete("123") is False
        assert await store.get("123") is None

    @pytest.mark.asyncio
    async def test_backend_failure_raises_store_error(self) -> None:
        store = TokenStore(_BrokenBackend())
        with pytest.raises(StoreError, match="store down"):
            await store.get("123")
        with pytest.raises(StoreError):
            await store.set("123", _credential())

    @pytest.mark.asyncio
    async def test_corrupt_value_raises_store_error(self) -> None:
        backend = MemoryKeyValueStore({"quickbooks/token/123": "{not json"})
        with pytest.raises(StoreError, match="Unreadable"):
            await TokenStore(backend).get("123")

    @pytest.mark.asyncio
    async def test_encrypted_round_trip(self) -> None:
        key = Fernet.generate_key()
        backend = MemoryKeyValueStore()
        store = TokenStore(backend, encryption_key=key)
        await store.set("123", _credential())

        raw = await backend.get("quickbooks/token/123")
        assert "access" not in raw
        assert await store.get("123") == _credential()

    @pytest.mark.asyncio
    async def test_wrong_encryption_key(self) -> None:
        backend = MemoryKeyValueStore()
        await TokenStore(backend, encryption_key=Fernet.generate_key()).set("123", _credential())
        with pytest.raises(StoreError, match="decrypt"):
            await TokenStore(backend, encryption_key=Fernet.generate_key()).get("123")


class TestFileKeyValueStore:
    @pytest.mark.asyncio
    async def test_round_trip_through_token_store(self, tmp_path: Path) -> None:
        store = TokenStore(FileKeyValueStore(tmp_path))
        await store.set("123", _credential())
        assert await store.get("123") == _credential()

        token_file = tmp_path / "quickbooks" / "token" / "123.json"
        assert token_file.exists()
        assert stat.S_IMODE(token_file.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_created_owner_only_regardless_of_umask(self, tmp_path: Path) -> None:
        backend = FileKeyValueStore(tmp_path)
        stale = tmp_path / "quickbooks" / "token" / "123.tmp"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")
        stale.chmod(0o644)

        old_umask = os.umask(0)
        try:
            await backend.set("quickbooks/token/123", "{}")
        finally:
            os.umask(old_umask)

        token_file = tmp_path / "quickbooks" / "token" / "123.json"
        assert stat.S_IMODE(token_file.stat().st_mode) == 0o600
        assert token_file.read_text() == "{}"
        assert not stale.exists()

    @pytest.mark.asyncio
    async def test_file_io_runs_in_worker_thread(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[str] = []
        real_to_thread = asyncio.to_thread

        async def spy(func, /, *args, **kwargs):
            calls.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(file_store.asyncio, "to_thread", spy)
        backend = FileKeyValueStore(tmp_path)
        await backend.set("quickbooks/token/123", "{}")
        await backend.get("quickbooks/token/123")
        await backend.delete("quickbooks/token/123")
        assert calls == ["_write", "_read", "_delete"]

    @pytest.mark.asyncio
    async def test_missing_key(self, tmp_path: Path) -> None:
        assert await FileKeyValueStore(tmp_path).get("quickbooks/token/none") is None

    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self, tmp_path: Path) -> None:
        store = TokenStore(FileKeyValueStore(tmp_path))
        with pytest.raises(StoreError, match="Invalid store key"):
            await store.set("../../etc", _credential())

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path: Path) -> None:
        backend = FileKeyValueStore(tmp_path)
        await backend.set("quickbooks/token/123", "{}")
        assert await backend.delete("quickbooks/token/123") is True
        assert await backend.delete("quickbooks/token/123") is False
