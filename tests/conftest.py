"""Shared test fixtures for devyard."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from devyard.types import ExecResult

# ---------------------------------------------------------------------------
# Shared helpers (plain functions/classes, not fixtures - importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"config_dir", "settings_path"})


def make_settings(**overrides):
    """Create a Settings object with defaults for testing.

    Accepts both model fields (supervisor, remote, ...) and cached property
    overrides (settings_path, config_dir).

    Usage::

        s = make_settings(settings_path=tmp_path / "settings.json")
        s = make_settings(supervisor=SupervisorConfig(grace_delay=0))
    """
    from devyard.config import (
        LoggingConfig,
        RemoteConfig,
        SecretsConfig,
        Settings,
        SupervisorConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "supervisor": SupervisorConfig(),
        "remote": RemoteConfig(),
        "secrets": SecretsConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


class FakeProcess:
    """Simulates asyncio.subprocess.Process for testing."""

    def __init__(self, pid: int = 12345) -> None:
        self.stdin = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._returncode: int | None = None
        self._wait_event = asyncio.Event()
        self.pid = pid
        self.killed = False

    def emit_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def close(self, code: int = 0) -> None:
        """Simulate process exit."""
        self._returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._wait_event.set()

    async def wait(self) -> int:
        await self._wait_event.wait()
        return self._returncode  # type: ignore[return-value]

    def kill(self) -> None:
        self.killed = True

    @property
    def returncode(self) -> int | None:
        return self._returncode


@dataclass
class FakeCompleted:
    """Shape of asyncssh.SSHCompletedProcess that the pool reads."""

    stdout: str = ""
    stderr: str = ""
    exit_status: int | None = 0


class FakeConnection:
    """Stand-in for asyncssh.SSHClientConnection.

    ``responses`` maps a command substring to a FakeCompleted, an exception
    to raise, or a coroutine function to await (for slow commands).
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.commands: list[tuple[str, str | None]] = []
        self.closed = False

    async def run(self, command: str, input: str | None = None, check: bool = False):
        self.commands.append((command, input))
        for needle, response in self.responses.items():
            if needle in command:
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return await response()
                return response
        return FakeCompleted(stdout="", stderr="", exit_status=1)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


def fake_connector(conn: FakeConnection, clients: list | None = None) -> Callable[..., Any]:
    """asyncssh.connect replacement that returns *conn* and records the client."""
    calls: list[dict[str, Any]] = []

    async def connect(host: str, **kwargs: Any) -> FakeConnection:
        calls.append({"host": host, **kwargs})
        client = kwargs["client_factory"]()
        if clients is not None:
            clients.append(client)
        return conn

    connect.calls = calls  # type: ignore[attr-defined]
    return connect


class FakeSession:
    """Probe target for discovery/service tests.

    ``handlers`` maps a command substring to an ExecResult or an exception.
    Unmatched commands return exit 1 with empty output.
    """

    def __init__(self, handlers: dict[str, Any] | None = None, *, password: str = "") -> None:
        self.host_id = "host-1"
        self.password = password
        self.handlers = handlers or {}
        self.commands: list[str] = []
        self.sudo_commands: list[str] = []

    def _respond(self, command: str) -> ExecResult:
        for needle, response in self.handlers.items():
            if needle in command:
                if isinstance(response, BaseException):
                    raise response
                return response
        return ExecResult(stdout="", stderr="", exit_code=1)

    async def run(self, command: str, *, timeout: float, stdin: str | None = None) -> ExecResult:
        self.commands.append(command)
        return self._respond(command)

    async def run_sudo(
        self, command: str, *, timeout: float, password: str | None = None
    ) -> ExecResult:
        self.sudo_commands.append(command)
        return self._respond(f"sudo::{command}")


class MemorySettingsStore:
    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})
        self.saves = 0

    def load(self) -> dict[str, Any]:
        return dict(self.data)

    def save(self, partial: dict[str, Any]) -> None:
        self.data.update(partial)
        self.saves += 1


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, bool]] = []

    def notify(self, title: str, body: str, silent: bool = False) -> None:
        self.sent.append((title, body, silent))


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Each test starts from pure defaults - no devyard.toml, no .env, no home dir writes."""
    safe = make_settings(config_dir=tmp_path, settings_path=tmp_path / "settings.json")
    monkeypatch.setattr("devyard.config._settings", safe)
