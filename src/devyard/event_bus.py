"""Ordered asyncio event channel drained by a single relay task.

Producers (process readers, exit handlers, log streams) call :meth:`EventBus.emit`
and never block. One relay task delivers events to subscribers strictly in
emission order, so a ``stopped`` event can never overtake the last
``log-data`` chunk of the same process.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, TypeAlias

from devyard.logger import logger

# --- Event types ---


@dataclass
class LogData:
    """A sanitized output chunk from a supervised process."""

    kind: ClassVar[str] = "log-data"

    project_key: str
    instance_id: str
    data: str


@dataclass
class PortChanged:
    """Port autodetection locked the instance's observed port."""

    kind: ClassVar[str] = "port-changed"

    project_key: str
    instance_id: str
    port: int


@dataclass
class ProcessStopped:
    kind: ClassVar[str] = "stopped"

    project_key: str
    instance_id: str
    code: int | None
    background: bool = False
    error: str | None = None


@dataclass
class ContainerLog:
    kind: ClassVar[str] = "docker-log"

    container_id: str
    data: str


@dataclass
class ContainerLogEnd:
    kind: ClassVar[str] = "docker-log-end"

    container_id: str


Event: TypeAlias = LogData | PortChanged | ProcessStopped | ContainerLog | ContainerLogEnd
Listener: TypeAlias = Callable[[Any], Coroutine[Any, Any, None]]


def event_payload(event: Event) -> dict[str, Any]:
    """Wire form of an event: ``{"kind": ..., "payload": {...}}``."""
    return {"kind": event.kind, "payload": asdict(event)}


class EventBus:
    """Fire-and-forget for producers, ordered for consumers."""

    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)
        self._catch_all: list[Listener] = []
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._relay_task: asyncio.Task[None] | None = None

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(listener)

        return _unsubscribe

    def subscribe_all(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to every event type (a relay to some outer surface)."""
        self._catch_all.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._catch_all.remove(listener)

        return _unsubscribe

    def emit(self, event: Event) -> None:
        """Queue an event for delivery. Never blocks the caller."""
        self._queue.put_nowait(event)
        self._ensure_relay()

    async def drain(self) -> None:
        """Wait until every event emitted so far has been delivered."""
        self._ensure_relay()
        await self._queue.join()

    async def close(self) -> None:
        """Deliver what is queued, then stop the relay."""
        if self._relay_task is None:
            return
        await self.drain()
        self._relay_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._relay_task
        self._relay_task = None

    def _ensure_relay(self) -> None:
        if self._relay_task is not None and not self._relay_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; events stay queued until the first emit/drain under a loop.
            return
        self._relay_task = loop.create_task(self._relay(), name="event-relay")

    async def _relay(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                for listener in (*self._listeners[type(event)], *self._catch_all):
                    await _safe_call(listener, event)
            finally:
                self._queue.task_done()


async def _safe_call(listener: Listener, event: Event) -> None:
    try:
        await listener(event)
    except Exception as exc:
        logger.warning("EventBus listener error", kind=event.kind, err=str(exc))
