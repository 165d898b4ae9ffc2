"""Per-instance state: identity, handle, ports and the lifecycle state machine."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum

from devyard.errors import DevyardError
from devyard.types import ExecutionContext, LaunchMethod


class InstanceState(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"


_TRANSITIONS: dict[InstanceState, frozenset[InstanceState]] = {
    InstanceState.STARTING: frozenset(
        {InstanceState.RUNNING, InstanceState.STOPPING, InstanceState.STOPPED, InstanceState.CRASHED}
    ),
    InstanceState.RUNNING: frozenset(
        {InstanceState.STOPPING, InstanceState.STOPPED, InstanceState.CRASHED}
    ),
    InstanceState.STOPPING: frozenset({InstanceState.STOPPED}),
    InstanceState.STOPPED: frozenset(),
    InstanceState.CRASHED: frozenset(),
}

class InvalidTransitionError(DevyardError):
    kind = "invalid_transition"


@dataclass
class ProcessInstance:
    """One supervised process, keyed by ``(project_key, instance_id)``.

    ``teardown`` is the optional best-effort command (compose down, container
    stop) issued before termination; it runs in the same context as the
    process itself.
    """

    project_key: str
    instance_id: str
    context: ExecutionContext
    handle: asyncio.subprocess.Process
    requested_port: int
    method: LaunchMethod
    cwd: str
    background: bool = False
    teardown: list[str] | None = None
    started_at: float = field(default_factory=time.time)
    observed_port: int | None = None
    port_locked: bool = False
    stop_requested: bool = False
    state: InstanceState = InstanceState.STARTING

    @property
    def identity(self) -> tuple[str, str]:
        return (self.project_key, self.instance_id)

    @property
    def pid(self) -> int | None:
        return self.handle.pid

    @property
    def effective_port(self) -> int:
        """Observed port once locked, otherwise the requested one."""
        if self.port_locked and self.observed_port is not None:
            return self.observed_port
        return self.requested_port

    def transition(self, new_state: InstanceState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.instance_id}: cannot go from {self.state} to {new_state}"
            )
        self.state = new_state

    def lock_port(self, port: int) -> bool:
        """Record the detected port. Returns True only on the first call."""
        if self.port_locked:
            return False
        self.observed_port = port
        self.port_locked = True
        return True

    def exit_state(self, code: int | None) -> InstanceState:
        """Terminal state for an exit with *code*.

        A requested stop is never a crash. Background instances never crash
        either: their launcher (``compose up -d``) exits as soon as it has
        handed the work off.
        """
        if self.stop_requested or self.background or code in (0, None):
            return InstanceState.STOPPED
        return InstanceState.CRASHED

    def summary(self) -> dict[str, object]:
        return {"port": self.effective_port, "method": self.method, "pid": self.pid}
