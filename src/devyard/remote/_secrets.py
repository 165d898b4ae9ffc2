"""Platform secret store for remote-host passwords.

Passwords are kept in the OS keyring; the host record only carries an
opaque reference (``keyring:<host id>``). Without a usable keyring backend
callers fall back to storing the password in clear text, and say so.
"""

from __future__ import annotations

import keyring
from keyring.errors import KeyringError

from devyard.logger import logger

REFERENCE_PREFIX = "keyring:"


class SecretStore:
    def __init__(self, service: str = "devyard") -> None:
        self._service = service

    def is_available(self) -> bool:
        """True when a real (non-fail, non-null) keyring backend is active."""
        try:
            backend = keyring.get_keyring()
        except KeyringError:
            return False
        return getattr(backend, "priority", 0) > 0

    def encrypt(self, host_id: str, secret: str) -> str | None:
        """Store *secret* and return its reference, or None if the keyring refused."""
        try:
            keyring.set_password(self._service, host_id, secret)
        except KeyringError as exc:
            logger.warning("Keyring write failed", host=host_id, err=str(exc))
            return None
        return f"{REFERENCE_PREFIX}{host_id}"

    def decrypt(self, reference: str | None) -> str | None:
        """Resolve a reference produced by :meth:`encrypt`; None when unavailable."""
        if not reference or not reference.startswith(REFERENCE_PREFIX):
            return None
        try:
            return keyring.get_password(self._service, reference.removeprefix(REFERENCE_PREFIX))
        except KeyringError as exc:
            logger.debug("Keyring read failed", reference=reference, err=str(exc))
            return None

    def delete(self, host_id: str) -> None:
        try:
            keyring.delete_password(self._service, host_id)
        except KeyringError as exc:
            # PasswordDeleteError (nothing stored) is a KeyringError too
            logger.debug("Keyring delete skipped", host=host_id, err=str(exc))
