"""Tests for remote service actions and log tails."""

from __future__ import annotations

import pytest
from conftest import FakeSession

from devyard.errors import InvalidInputError, RemoteCommandError
from devyard.remote import service_action, service_logs
from devyard.types import ExecResult


def _result(stdout="", stderr="", code=0) -> ExecResult:
    return ExecResult(stdout=stdout, stderr=stderr, exit_code=code)


class TestServiceAction:
    @pytest.mark.asyncio
    async def test_process_manager_restart(self):
        session = FakeSession({"pm2 restart": _result("[PM2] Applying action restartProcessId\n")})
        out = await service_action(session, "process-manager", "api", "restart")
        assert out.startswith("[PM2]")
        assert session.commands == ["pm2 restart api 2>&1"]
        assert session.sudo_commands == []

    @pytest.mark.asyncio
    async def test_retries_through_sudo_when_password_known(self):
        session = FakeSession(
            {
                "sudo::docker": _result("web\n"),
                "docker stop": _result("permission denied", code=1),
            },
            password="pw",
        )
        assert await service_action(session, "container", "web", "stop") == "web\n"
        assert session.sudo_commands == ["docker stop web 2>&1"]

    @pytest.mark.asyncio
    async def test_failure_without_password_raises_command_error(self):
        session = FakeSession({"docker stop": _result("", "no such container", code=1)})
        with pytest.raises(RemoteCommandError, match="no such container") as exc_info:
            await service_action(session, "container", "web", "stop")
        assert exc_info.value.exit_code == 1
        assert session.sudo_commands == []

    @pytest.mark.asyncio
    async def test_systemd_always_uses_sudo(self):
        session = FakeSession({"sudo::systemctl": _result()}, password="pw")
        await service_action(session, "service-manager", "php-fpm@8.1", "restart")
        assert session.commands == []
        assert session.sudo_commands == ["systemctl restart php-fpm@8.1 2>&1"]

    @pytest.mark.asyncio
    async def test_name_is_sanitized(self):
        session = FakeSession({"pm2": _result()})
        await service_action(session, "process-manager", "api; rm -rf ~", "stop")
        assert session.commands == ["pm2 stop apirm-rf 2>&1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("kind", "action"),
        [("process-manager", "start"), ("container", "delete"), ("service-manager", "reload"), ("cron", "stop")],
    )
    async def test_disallowed(self, kind, action):
        session = FakeSession()
        with pytest.raises(InvalidInputError):
            await service_action(session, kind, "x", action)
        assert session.commands == [] and session.sudo_commands == []


class TestServiceLogs:
    @pytest.mark.asyncio
    async def test_process_manager(self):
        session = FakeSession({"pm2 logs": _result("line\n")})
        assert await service_logs(session, "process-manager", "api", 20) == "line\n"
        assert session.commands == ["pm2 logs api --nostream --lines 20 2>&1"]

    @pytest.mark.asyncio
    async def test_container_clamps_lines(self):
        session = FakeSession({"docker logs": _result("x")})
        await service_logs(session, "container", "web", 5000)
        assert session.commands == ["docker logs --tail 200 web 2>&1"]

    @pytest.mark.asyncio
    async def test_journal(self):
        session = FakeSession({"journalctl": _result("Started nginx.\n")})
        assert await service_logs(session, "service-manager", "nginx", "abc") == "Started nginx.\n"
        assert session.commands == ["journalctl -u nginx --no-pager -n 50 2>&1"]

    @pytest.mark.asyncio
    async def test_empty_output(self):
        session = FakeSession({"journalctl": _result("")})
        assert await service_logs(session, "service-manager", "nginx") == "No logs"

    @pytest.mark.asyncio
    async def test_unknown_kind(self):
        with pytest.raises(InvalidInputError):
            await service_logs(FakeSession(), "cron", "x")
