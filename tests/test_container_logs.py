"""Tests for container log followers."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeProcess

from devyard.context import resolve
from devyard.errors import InvalidInputError
from devyard.event_bus import ContainerLog, ContainerLogEnd, EventBus
from devyard.supervisor import ContainerLogStreams
from devyard.types import NATIVE

_MOD = "devyard.supervisor._container_logs"


class TestContainerLogStreams:
    @pytest.mark.asyncio
    async def test_follows_and_relays_sanitized_output(self):
        bus = EventBus()
        events: list = []

        async def record(event):
            events.append(event)

        bus.subscribe_all(record)
        streams = ContainerLogStreams(bus, tail=50)
        proc = FakeProcess()
        spawn = AsyncMock(return_value=(proc, NATIVE))

        with patch(f"{_MOD}.spawn_in_context", spawn):
            assert await streams.start("abc123def456") is True

        args = spawn.await_args.args
        assert args[2] == ["logs", "-f", "--tail", "50", "abc123def456"]
        assert args[3].cwd is None
        assert streams.active == ["abc123def456"]

        proc.emit_stdout(b"\x1b[33mwarn\x1b[0m db slow\n")
        proc.close(0)
        await asyncio.sleep(0.01)
        await bus.drain()

        assert events == [
            ContainerLog(container_id="abc123def456", data="warn db slow\n"),
            ContainerLogEnd(container_id="abc123def456"),
        ]
        assert streams.active == []

    @pytest.mark.asyncio
    async def test_second_start_is_a_no_op(self):
        streams = ContainerLogStreams(EventBus())
        proc = FakeProcess()
        spawn = AsyncMock(return_value=(proc, NATIVE))
        with patch(f"{_MOD}.spawn_in_context", spawn):
            assert await streams.start("abcd") is True
            assert await streams.start("abcd") is False
        assert spawn.await_count == 1
        proc.close(0)
        await streams.drain()

    @pytest.mark.asyncio
    async def test_bridged_project_runs_follower_in_bridge(self):
        streams = ContainerLogStreams(EventBus())
        proc = FakeProcess()
        project = r"\\wsl$\Ubuntu\home\me\app"
        spawn = AsyncMock(return_value=(proc, resolve(project)))
        with patch(f"{_MOD}.spawn_in_context", spawn):
            await streams.start("abcd", project)
        assert spawn.await_args.args[3].cwd == project
        proc.close(0)
        await streams.drain()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("container_id", ["", "abc", "abcd; rm -rf /", "../../etc", "g" * 10])
    async def test_rejects_invalid_ids(self, container_id):
        streams = ContainerLogStreams(EventBus())
        spawn = AsyncMock()
        with patch(f"{_MOD}.spawn_in_context", spawn):
            with pytest.raises(InvalidInputError):
                await streams.start(container_id)
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_kills_follower(self):
        streams = ContainerLogStreams(EventBus())
        proc = FakeProcess()
        with patch(f"{_MOD}.spawn_in_context", AsyncMock(return_value=(proc, NATIVE))):
            await streams.start("abcd")

        assert streams.stop("abcd") is True
        assert proc.killed
        assert streams.stop("abcd") is False
        proc.close(-9)
        await streams.drain()
