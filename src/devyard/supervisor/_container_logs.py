"""Follow ``docker logs -f`` for containers and relay the output as events."""

from __future__ import annotations

import asyncio
import contextlib

from devyard.context import is_bridge_path
from devyard.event_bus import ContainerLog, ContainerLogEnd, EventBus
from devyard.logger import logger
from devyard.runtime import CONTAINER_CLI
from devyard.sanitizer import sanitize
from devyard.supervisor._streams import pump, spawn_in_context
from devyard.types import SpawnOptions
from devyard.validation import validate_container_id


class ContainerLogStreams:
    """Registry of live log followers, one per container id."""

    def __init__(self, bus: EventBus, *, tail: int = 200) -> None:
        self._bus = bus
        self._tail = tail
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def active(self) -> list[str]:
        return sorted(self._procs)

    async def start(self, container_id: str, project_path: str | None = None) -> bool:
        """Begin following *container_id*. Returns False if it is already followed.

        When *project_path* is bridged the follower runs inside the bridge,
        where that project's docker daemon lives.
        """
        validate_container_id(container_id)
        if container_id in self._procs:
            return False

        cwd = project_path if project_path and is_bridge_path(project_path) else None
        proc, _ = await spawn_in_context(
            CONTAINER_CLI,
            CONTAINER_CLI,
            ["logs", "-f", "--tail", str(self._tail), container_id],
            SpawnOptions(cwd=cwd),
        )
        self._procs[container_id] = proc
        self._tasks[container_id] = asyncio.create_task(
            self._follow(container_id, proc), name=f"container-logs-{container_id}"
        )
        logger.debug("Following container logs", container=container_id, pid=proc.pid)
        return True

    def stop(self, container_id: str) -> bool:
        proc = self._procs.pop(container_id, None)
        if proc is None:
            return False
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        return True

    async def drain(self) -> None:
        """Stop every follower and wait for their end events."""
        for container_id in list(self._procs):
            self.stop(container_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _follow(self, container_id: str, proc: asyncio.subprocess.Process) -> None:
        def relay(text: str) -> None:
            self._bus.emit(ContainerLog(container_id=container_id, data=sanitize(text)))

        try:
            await asyncio.gather(pump(proc.stdout, relay), pump(proc.stderr, relay))
            await proc.wait()
        finally:
            if self._procs.get(container_id) is proc:
                del self._procs[container_id]
            if self._tasks.get(container_id) is asyncio.current_task():
                del self._tasks[container_id]
            self._bus.emit(ContainerLogEnd(container_id=container_id))
