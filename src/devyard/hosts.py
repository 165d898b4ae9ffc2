"""Persisted remote-host records.

Passwords go to the platform keyring when one is usable; the record then
carries only a reference in ``encrypted_password``. Without a keyring the
password is written to the settings file in clear text and a warning is
logged.
"""

from __future__ import annotations

from typing import Any

from devyard.collaborators import SettingsStore
from devyard.logger import logger
from devyard.remote import RemoteSessionPool, SecretStore
from devyard.types import HostConfig

HOSTS_KEY = "remote_hosts"


class HostStore:
    def __init__(
        self,
        store: SettingsStore,
        secrets: SecretStore,
        pool: RemoteSessionPool | None = None,
    ) -> None:
        self._store = store
        self._secrets = secrets
        self._pool = pool

    def _records(self) -> list[dict[str, Any]]:
        records = self._store.load().get(HOSTS_KEY) or []
        return [r for r in records if isinstance(r, dict) and r.get("id")]

    def hosts(self) -> list[HostConfig]:
        return [HostConfig.from_dict(r) for r in self._records()]

    def get(self, host_id: str) -> HostConfig | None:
        for record in self._records():
            if record["id"] == host_id:
                return HostConfig.from_dict(record)
        return None

    def save(self, host: HostConfig) -> list[HostConfig]:
        """Insert or merge *host* by id; returns the full list."""
        record = host.to_dict()
        encrypted = False
        if host.password:
            reference = self._secrets.encrypt(host.id, host.password) if self._secrets.is_available() else None
            if reference is not None:
                record["encrypted_password"] = reference
                record.pop("password", None)
                encrypted = True
            else:
                logger.warning("No secret store available, password saved in clear text", host=host.id)

        records = self._records()
        for existing in records:
            if existing["id"] == host.id:
                existing.update(record)
                if encrypted:
                    existing.pop("password", None)
                break
        else:
            records.append(record)

        self._store.save({HOSTS_KEY: records})
        logger.info("Host saved", host=host.id, encrypted=encrypted)
        return [HostConfig.from_dict(r) for r in records]

    async def delete(self, host_id: str) -> list[HostConfig]:
        """Disconnect, forget the stored secret and drop the record."""
        if self._pool is not None:
            await self._pool.disconnect(host_id)
        records = self._records()
        kept = [r for r in records if r["id"] != host_id]
        if any(r.get("encrypted_password") for r in records if r["id"] == host_id):
            self._secrets.delete(host_id)
        self._store.save({HOSTS_KEY: kept})
        return [HostConfig.from_dict(r) for r in kept]
