"""Tests for RemoteSessionPool and RemoteSession."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import asyncssh
import pytest
from conftest import FakeCompleted, FakeConnection, fake_connector

from devyard.config import RemoteConfig
from devyard.errors import (
    AuthenticationError,
    NotConnectedError,
    RemoteTimeoutError,
    TransportError,
)
from devyard.remote import RemoteSessionPool, sudo_wrap
from devyard.types import ConnectStatus, HostConfig


class _Secrets:
    def __init__(self, value: str | None = None) -> None:
        self.value = value
        self.references: list[str] = []

    def decrypt(self, reference):
        self.references.append(reference)
        return self.value


def _host(**overrides) -> HostConfig:
    defaults = {"id": "h1", "host": "10.0.0.5", "username": "deploy", "password": "pw"}
    defaults.update(overrides)
    return HostConfig(**defaults)


def _stalled_connector():
    """Connector that never finishes, for in-flight connect tests."""
    never = asyncio.Event()

    async def connect(host, **kwargs):
        kwargs["client_factory"]()
        await never.wait()
        return FakeConnection()

    return connect


def _pool(conn=None, clients=None, *, connector=None, secrets=None, **config) -> RemoteSessionPool:
    return RemoteSessionPool(
        config=RemoteConfig(**config),
        secrets=secrets or _Secrets(),
        connector=connector or fake_connector(conn or FakeConnection(), clients),
    )


class TestConnect:
    @pytest.mark.asyncio
    async def test_not_connected_fails_immediately(self):
        connector = fake_connector(FakeConnection())
        pool = _pool(connector=connector)
        with pytest.raises(NotConnectedError, match="Not connected"):
            await pool.exec("nope", "uptime")
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_password_connect_then_already_connected(self):
        connector = fake_connector(FakeConnection())
        pool = _pool(connector=connector)

        assert await pool.connect(_host()) is ConnectStatus.CONNECTED
        assert await pool.connect(_host()) is ConnectStatus.ALREADY_CONNECTED

        assert len(connector.calls) == 1
        call = connector.calls[0]
        assert call["host"] == "10.0.0.5"
        assert call["port"] == 22
        assert call["username"] == "deploy"
        assert call["password"] == "pw"
        assert call["client_keys"] is None
        assert call["known_hosts"] is None
        assert pool.connected_ids() == ["h1"]

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_attempt(self):
        gate = asyncio.Event()
        calls = []

        async def slow_connect(host, **kwargs):
            calls.append(host)
            kwargs["client_factory"]()
            await gate.wait()
            return FakeConnection()

        pool = _pool(connector=slow_connect)
        first = asyncio.create_task(pool.connect(_host()))
        second = asyncio.create_task(pool.connect(_host()))
        await asyncio.sleep(0)
        gate.set()

        statuses = {await first, await second}
        assert statuses == {ConnectStatus.CONNECTED, ConnectStatus.ALREADY_CONNECTED}
        assert calls == ["10.0.0.5"]

    @pytest.mark.asyncio
    async def test_cancelled_owner_fails_joiners_with_transport_error(self):
        pool = _pool(connector=_stalled_connector())
        owner = asyncio.create_task(pool.connect(_host()))
        await asyncio.sleep(0)
        joiner = asyncio.create_task(pool.connect(_host()))
        await asyncio.sleep(0)

        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        with pytest.raises(TransportError, match="cancelled"):
            await joiner
        assert pool.connected_ids() == []

    @pytest.mark.asyncio
    async def test_encrypted_password_is_resolved(self):
        connector = fake_connector(FakeConnection())
        secrets = _Secrets("from-keyring")
        pool = _pool(connector=connector, secrets=secrets)

        await pool.connect(_host(password=None, encrypted_password="keyring:h1"))

        assert secrets.references == ["keyring:h1"]
        assert connector.calls[0]["password"] == "from-keyring"
        assert pool.get("h1").password == "from-keyring"

    @pytest.mark.asyncio
    async def test_inline_key_auth(self):
        connector = fake_connector(FakeConnection())
        pool = _pool(connector=connector)
        key = object()
        with patch("devyard.remote._pool.asyncssh.import_private_key", return_value=key) as imp:
            await pool.connect(_host(auth_type="key", password=None, private_key="KEY", passphrase="pp"))

        imp.assert_called_once_with("KEY", "pp")
        assert connector.calls[0]["client_keys"] == [key]
        assert "password" not in connector.calls[0]
        assert pool.get("h1").password == ""

    @pytest.mark.asyncio
    async def test_unreadable_key_file(self, tmp_path):
        pool = _pool()
        host = _host(auth_type="key", password=None, private_key_path=str(tmp_path / "missing"))
        with pytest.raises(AuthenticationError, match="Cannot read private key"):
            await pool.connect(host)
        assert pool.get("h1") is None

    @pytest.mark.asyncio
    async def test_permission_denied_is_authentication_error(self):
        async def deny(host, **kwargs):
            raise asyncssh.PermissionDenied("Permission denied")

        pool = _pool(connector=deny)
        with pytest.raises(AuthenticationError, match="Permission denied"):
            await pool.connect(_host())
        assert pool.connected_ids() == []

    @pytest.mark.asyncio
    async def test_refused_is_transport_error(self):
        async def refuse(host, **kwargs):
            raise ConnectionRefusedError("refused")

        pool = _pool(connector=refuse)
        with pytest.raises(TransportError):
            await pool.connect(_host())

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        async def hang(host, **kwargs):
            await asyncio.sleep(10)

        pool = _pool(connector=hang, connect_timeout=0.05)
        with pytest.raises(RemoteTimeoutError):
            await pool.connect(_host())
        # a later attempt is not blocked by the failed one
        pool._connector = fake_connector(FakeConnection())
        assert await pool.connect(_host()) is ConnectStatus.CONNECTED


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_transport_loss_deregisters(self):
        clients: list = []
        pool = _pool(clients=clients)
        await pool.connect(_host())

        clients[0].connection_lost(ConnectionResetError("reset"))

        assert pool.get("h1") is None
        with pytest.raises(NotConnectedError):
            await pool.exec("h1", "uptime")

    @pytest.mark.asyncio
    async def test_loss_of_old_session_keeps_new_one(self):
        clients: list = []
        pool = _pool(clients=clients)
        await pool.connect(_host())
        await pool.disconnect("h1")
        await pool.connect(_host())

        clients[0].connection_lost(None)

        assert pool.get("h1") is not None

    @pytest.mark.asyncio
    async def test_disconnect(self):
        conn = FakeConnection()
        pool = _pool(conn)
        await pool.connect(_host())

        assert await pool.disconnect("h1") is True
        assert conn.closed
        assert await pool.disconnect("h1") is False
        assert pool.connected_ids() == []

    @pytest.mark.asyncio
    async def test_close_all(self):
        pool = _pool()
        await pool.connect(_host(id="a"))
        await pool.connect(_host(id="b"))
        await pool.close_all()
        assert pool.connected_ids() == []

    @pytest.mark.asyncio
    async def test_disconnect_aborts_in_flight_connect(self):
        pool = _pool(connector=_stalled_connector())
        owner = asyncio.create_task(pool.connect(_host()))
        await asyncio.sleep(0)

        assert await pool.disconnect("h1") is True
        with pytest.raises(TransportError, match="cancelled"):
            await owner
        assert pool.connected_ids() == []
        assert await pool.disconnect("h1") is False

    @pytest.mark.asyncio
    async def test_close_all_aborts_in_flight_connects(self):
        pool = _pool(connector=_stalled_connector())
        owner = asyncio.create_task(pool.connect(_host()))
        await asyncio.sleep(0)

        await pool.close_all()
        with pytest.raises(TransportError):
            await owner


class TestExec:
    @pytest.mark.asyncio
    async def test_exec_returns_output_and_status(self):
        conn = FakeConnection({"uname": FakeCompleted(stdout=b"Linux\n", stderr="", exit_status=0)})
        pool = _pool(conn)
        await pool.connect(_host())

        result = await pool.exec("h1", "uname -a")

        assert (result.stdout, result.stderr, result.exit_code) == ("Linux\n", "", 0)

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_a_result_not_an_error(self):
        conn = FakeConnection({"false": FakeCompleted(stderr="nope", exit_status=1)})
        pool = _pool(conn)
        await pool.connect(_host())
        result = await pool.exec("h1", "false")
        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow():
            await asyncio.sleep(10)

        pool = _pool(FakeConnection({"sleep": slow}))
        await pool.connect(_host())
        with pytest.raises(RemoteTimeoutError, match="timeout after 0.05s"):
            await pool.exec("h1", "sleep 100", timeout=0.05)
        # the session survives a local timeout
        assert pool.get("h1") is not None

    @pytest.mark.asyncio
    async def test_channel_failure_is_transport_error(self):
        pool = _pool(FakeConnection({"ls": ConnectionResetError("reset by peer")}))
        await pool.connect(_host())
        with pytest.raises(TransportError):
            await pool.exec("h1", "ls")

    @pytest.mark.asyncio
    async def test_sudo_feeds_password_and_strips_prompt(self):
        conn = FakeConnection(
            {"systemctl": FakeCompleted(stdout="", stderr="[sudo] password for deploy: ", exit_status=0)}
        )
        pool = _pool(conn)
        await pool.connect(_host())

        result = await pool.exec_sudo("h1", "systemctl restart nginx")

        assert conn.commands == [("sudo -S bash -c 'systemctl restart nginx'", "pw\n")]
        assert result.stderr == ""


class TestSudoWrap:
    def test_quotes_for_outer_shell(self):
        assert sudo_wrap("echo it's") == "sudo -S bash -c 'echo it'\\''s'"
