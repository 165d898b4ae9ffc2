"""Tests for persisted host records and the keyring-backed secret store."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import MemorySettingsStore
from keyring.errors import KeyringError, PasswordDeleteError

from devyard.hosts import HOSTS_KEY, HostStore
from devyard.remote import SecretStore
from devyard.types import HostConfig


class _Secrets:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.stored: dict[str, str] = {}
        self.deleted: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def encrypt(self, host_id, secret):
        self.stored[host_id] = secret
        return f"keyring:{host_id}"

    def delete(self, host_id):
        self.deleted.append(host_id)


def _host(**overrides) -> HostConfig:
    defaults = {"id": "h1", "host": "10.0.0.5", "username": "deploy", "password": "pw"}
    defaults.update(overrides)
    return HostConfig(**defaults)


class TestHostStore:
    def test_password_goes_to_keyring(self):
        store, secrets = MemorySettingsStore(), _Secrets()
        hosts = HostStore(store, secrets).save(_host())

        assert secrets.stored == {"h1": "pw"}
        record = store.data[HOSTS_KEY][0]
        assert record["encrypted_password"] == "keyring:h1"
        assert "password" not in record
        assert hosts[0].password is None

    def test_clear_text_fallback_without_keyring(self):
        store = MemorySettingsStore()
        HostStore(store, _Secrets(available=False)).save(_host())
        assert store.data[HOSTS_KEY][0]["password"] == "pw"

    def test_save_merges_by_id(self):
        store = MemorySettingsStore({HOSTS_KEY: [{"id": "h1", "host": "old", "username": "u", "name": "Box"}]})
        hosts = HostStore(store, _Secrets()).save(_host(password=None))

        assert len(hosts) == 1
        assert hosts[0].host == "10.0.0.5"
        assert hosts[0].name == "Box"

    def test_merge_drops_previous_clear_text_password(self):
        store = MemorySettingsStore({HOSTS_KEY: [{"id": "h1", "host": "x", "username": "u", "password": "old"}]})
        HostStore(store, _Secrets()).save(_host(password="new"))
        assert "password" not in store.data[HOSTS_KEY][0]

    def test_ignores_malformed_records(self):
        store = MemorySettingsStore({HOSTS_KEY: [{"id": "h1", "host": "x", "username": "u"}, "junk", {"host": "y"}]})
        hosts = HostStore(store, _Secrets())
        assert [h.id for h in hosts.hosts()] == ["h1"]
        assert hosts.get("h1").host == "x"
        assert hosts.get("missing") is None

    @pytest.mark.asyncio
    async def test_delete_disconnects_and_forgets_secret(self):
        store, secrets = MemorySettingsStore(), _Secrets()
        pool = MagicMock()
        pool.disconnect = AsyncMock(return_value=True)
        hosts = HostStore(store, secrets, pool)
        hosts.save(_host())
        hosts.save(_host(id="h2", password=None))

        remaining = await hosts.delete("h1")

        pool.disconnect.assert_awaited_once_with("h1")
        assert secrets.deleted == ["h1"]
        assert [h.id for h in remaining] == ["h2"]
        assert [r["id"] for r in store.data[HOSTS_KEY]] == ["h2"]


class TestSecretStore:
    def test_round_trip_through_keyring(self):
        vault: dict[tuple[str, str], str] = {}
        with (
            patch("devyard.remote._secrets.keyring.set_password", side_effect=lambda s, u, p: vault.__setitem__((s, u), p)),
            patch("devyard.remote._secrets.keyring.get_password", side_effect=lambda s, u: vault.get((s, u))),
        ):
            store = SecretStore("devyard-test")
            reference = store.encrypt("h1", "pw")
            assert reference == "keyring:h1"
            assert store.decrypt(reference) == "pw"
        assert vault == {("devyard-test", "h1"): "pw"}

    def test_encrypt_failure(self):
        with patch("devyard.remote._secrets.keyring.set_password", side_effect=KeyringError("locked")):
            assert SecretStore().encrypt("h1", "pw") is None

    @pytest.mark.parametrize("reference", [None, "", "plain-text", "vault:h1"])
    def test_decrypt_foreign_reference(self, reference):
        assert SecretStore().decrypt(reference) is None

    def test_delete_missing_is_quiet(self):
        with patch("devyard.remote._secrets.keyring.delete_password", side_effect=PasswordDeleteError("none")):
            SecretStore().delete("h1")

    def test_availability_follows_backend_priority(self):
        backend = MagicMock(priority=0)
        with patch("devyard.remote._secrets.keyring.get_keyring", return_value=backend):
            assert SecretStore().is_available() is False
        backend.priority = 5
        with patch("devyard.remote._secrets.keyring.get_keyring", return_value=backend):
            assert SecretStore().is_available() is True
