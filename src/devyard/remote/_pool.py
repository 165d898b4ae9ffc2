"""RemoteSessionPool - at most one authenticated SSH session per host id.

A session is registered only after the transport is ready, and is dropped
from the registry the moment the transport reports loss, whoever caused it.
Command timeouts cancel the local wait; the remote command may keep
running.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

import asyncssh

from devyard.config import RemoteConfig, get_settings
from devyard.context import shell_quote
from devyard.errors import (
    AuthenticationError,
    NotConnectedError,
    RemoteTimeoutError,
    TransportError,
)
from devyard.logger import logger
from devyard.remote._secrets import SecretStore
from devyard.types import ConnectStatus, ExecResult, HostConfig

Connector: TypeAlias = Callable[..., Awaitable[Any]]

_SUDO_PROMPT_RE = re.compile(r"\[sudo\].*?:\s*")


def _text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


def sudo_wrap(command: str) -> str:
    """``sudo -S bash -c '<command>'`` with the command quoted for the outer shell."""
    return f"sudo -S bash -c {shell_quote(command)}"


class _SessionClient(asyncssh.SSHClient):
    """Reports transport loss back to the pool."""

    def __init__(self) -> None:
        self.lost = False
        self.on_lost: Callable[[Exception | None], None] | None = None

    def connection_lost(self, exc: Exception | None) -> None:
        self.lost = True
        if self.on_lost is not None:
            self.on_lost(exc)


@dataclass
class RemoteSession:
    host_id: str
    connection: Any  # asyncssh.SSHClientConnection
    password: str = ""  # kept for sudo; empty for key auth
    ready: bool = True

    async def run(self, command: str, *, timeout: float, stdin: str | None = None) -> ExecResult:
        try:
            result = await asyncio.wait_for(
                self.connection.run(command, input=stdin, check=False),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise RemoteTimeoutError(f"SSH command timeout after {timeout:g}s") from exc
        except (asyncssh.Error, OSError) as exc:
            raise TransportError(str(exc)) from exc
        return ExecResult(
            stdout=_text(result.stdout),
            stderr=_text(result.stderr),
            exit_code=result.exit_status,
        )

    async def run_sudo(
        self,
        command: str,
        *,
        timeout: float,
        password: str | None = None,
    ) -> ExecResult:
        """Run *command* as root, answering sudo's password prompt on stdin."""
        secret = self.password if password is None else password
        result = await self.run(sudo_wrap(command), timeout=timeout, stdin=f"{secret}\n")
        result.stderr = _SUDO_PROMPT_RE.sub("", result.stderr)
        return result

    async def close(self) -> None:
        self.ready = False
        self.connection.close()
        with contextlib.suppress(asyncssh.Error, OSError):
            await self.connection.wait_closed()


async def _await_attempt(attempt: Awaitable[RemoteSession]) -> RemoteSession:
    try:
        return await attempt
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
        # the shared attempt died under us, not our own caller
        raise TransportError("Connect was cancelled") from None


class RemoteSessionPool:
    def __init__(
        self,
        *,
        config: RemoteConfig | None = None,
        secrets: SecretStore | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._config = config or get_settings().remote
        self._secrets = secrets or SecretStore(get_settings().secrets.keyring_service)
        self._connector: Connector = connector or asyncssh.connect
        self._sessions: dict[str, RemoteSession] = {}
        self._connecting: dict[str, asyncio.Task[RemoteSession]] = {}

    @property
    def config(self) -> RemoteConfig:
        return self._config

    def get(self, host_id: str) -> RemoteSession | None:
        session = self._sessions.get(host_id)
        return session if session is not None and session.ready else None

    def require(self, host_id: str) -> RemoteSession:
        session = self.get(host_id)
        if session is None:
            raise NotConnectedError(host_id)
        return session

    def connected_ids(self) -> list[str]:
        return sorted(h for h, s in self._sessions.items() if s.ready)

    # --- Connect / disconnect ---

    async def connect(self, host: HostConfig) -> ConnectStatus:
        """Open a session for *host* unless a ready one exists.

        Concurrent connects for the same id share a single attempt. If that
        attempt is cancelled (by its owner or by ``disconnect``), everyone
        else waiting on it gets TransportError.
        """
        if self.get(host.id) is not None:
            return ConnectStatus.ALREADY_CONNECTED
        pending = self._connecting.get(host.id)
        if pending is not None:
            await _await_attempt(asyncio.shield(pending))
            return ConnectStatus.ALREADY_CONNECTED

        task = asyncio.ensure_future(self._open(host))
        self._connecting[host.id] = task
        try:
            await _await_attempt(task)
        finally:
            if self._connecting.get(host.id) is task:
                del self._connecting[host.id]
        return ConnectStatus.CONNECTED

    def _auth_options(self, host: HostConfig) -> tuple[dict[str, Any], str]:
        """asyncssh keyword arguments for *host*, plus the password kept for sudo."""
        if host.auth_type == "key":
            try:
                if host.private_key_path:
                    key = asyncssh.read_private_key(host.private_key_path, host.passphrase)
                elif host.private_key:
                    key = asyncssh.import_private_key(host.private_key, host.passphrase)
                else:
                    raise AuthenticationError("No private key configured")
            except (OSError, asyncssh.KeyImportError) as exc:
                raise AuthenticationError(f"Cannot read private key: {exc}") from exc
            return {"client_keys": [key]}, ""

        password = host.password or ""
        if host.encrypted_password:
            decrypted = self._secrets.decrypt(host.encrypted_password)
            if decrypted is not None:
                password = decrypted
        return {"password": password, "client_keys": None}, password

    async def _open(self, host: HostConfig) -> RemoteSession:
        options, password = self._auth_options(host)
        client = _SessionClient()
        try:
            conn = await asyncio.wait_for(
                self._connector(
                    host.host,
                    port=host.port,
                    username=host.username,
                    known_hosts=self._config.known_hosts,
                    client_factory=lambda: client,
                    **options,
                ),
                timeout=self._config.connect_timeout,
            )
        except asyncssh.PermissionDenied as exc:
            raise AuthenticationError(exc.reason or "Authentication failed") from exc
        except TimeoutError as exc:
            raise RemoteTimeoutError(f"Timed out connecting to {host.host}") from exc
        except (asyncssh.Error, OSError) as exc:
            raise TransportError(str(exc)) from exc

        if client.lost:
            raise TransportError(f"Connection to {host.host} closed during setup")

        session = RemoteSession(host_id=host.id, connection=conn, password=password)
        client.on_lost = lambda exc: self._on_lost(session, exc)
        self._sessions[host.id] = session
        logger.info("SSH session ready", host=host.id, address=host.host, auth=host.auth_type)
        return session

    def _on_lost(self, session: RemoteSession, exc: Exception | None) -> None:
        session.ready = False
        if self._sessions.get(session.host_id) is session:
            del self._sessions[session.host_id]
            logger.info("SSH session closed", host=session.host_id, err=str(exc) if exc else None)

    async def disconnect(self, host_id: str) -> bool:
        """Close *host_id*'s session or abort its in-flight connect.

        Returns False if there was neither.
        """
        pending = self._connecting.pop(host_id, None)
        aborted = pending is not None and pending.cancel()
        if aborted:
            logger.info("SSH connect aborted", host=host_id)
        session = self._sessions.pop(host_id, None)
        if session is None:
            return aborted
        await session.close()
        logger.info("SSH session disconnected", host=host_id)
        return True

    async def close_all(self) -> None:
        await asyncio.gather(
            *(self.disconnect(h) for h in {*self._sessions, *self._connecting}),
            return_exceptions=True,
        )

    # --- Commands ---

    async def exec(self, host_id: str, command: str, *, timeout: float | None = None) -> ExecResult:
        session = self.require(host_id)
        return await session.run(command, timeout=timeout or self._config.exec_timeout)

    async def exec_sudo(
        self,
        host_id: str,
        command: str,
        *,
        timeout: float | None = None,
        password: str | None = None,
    ) -> ExecResult:
        session = self.require(host_id)
        return await session.run_sudo(
            command, timeout=timeout or self._config.exec_timeout, password=password
        )
