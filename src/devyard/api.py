"""DevyardCore - the operations an outer surface (desktop shell, CLI) calls.

Every operation returns an :class:`Envelope`; nothing raises across this
boundary. Components raise :class:`DevyardError` subclasses and this is the
only place they are turned into ``{success, data, error, error_kind}``.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, is_dataclass
from enum import Enum
from typing import Any

from devyard import runtime
from devyard.collaborators import (
    ComposeParser,
    JsonSettingsStore,
    ManifestInspector,
    NotificationSink,
    SettingsStore,
)
from devyard.config import Settings, get_settings
from devyard.context import resolve
from devyard.envfiles import inject_env
from devyard.errors import DevyardError
from devyard.event_bus import EventBus
from devyard.hosts import HostStore
from devyard.logger import logger
from devyard.ports import kill_port_process, scan_listening_ports
from devyard.remote import (
    DiscoveryPipeline,
    RemoteSessionPool,
    SecretStore,
    service_action,
    service_logs,
)
from devyard.remote._pool import Connector
from devyard.supervisor import ProcessSupervisor
from devyard.types import HostConfig, LaunchSpec


@dataclass
class Envelope:
    success: bool
    data: Any = None
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def to_data(value: Any) -> Any:
    """Plain JSON-able form of operation results."""
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: to_data(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_data(v) for v in value]
    return value


class DevyardCore:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        bus: EventBus | None = None,
        notifier: NotificationSink | None = None,
        compose_parser: ComposeParser | None = None,
        manifest_inspector: ManifestInspector | None = None,
        settings_store: SettingsStore | None = None,
        secrets: SecretStore | None = None,
        connector: Connector | None = None,
    ) -> None:
        s = settings or get_settings()
        self.bus = bus or EventBus()
        self.supervisor = ProcessSupervisor(
            self.bus,
            notifier=notifier,
            compose_parser=compose_parser,
            manifest_inspector=manifest_inspector,
            config=s.supervisor,
        )
        self.secrets = secrets or SecretStore(s.secrets.keyring_service)
        self.pool = RemoteSessionPool(config=s.remote, secrets=self.secrets, connector=connector)
        self.discovery = DiscoveryPipeline(s.remote)
        self.hosts = HostStore(
            settings_store or JsonSettingsStore(s.settings_path), self.secrets, self.pool
        )

    async def _call(self, op: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Envelope:
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except DevyardError as exc:
            logger.debug("Operation failed", op=op, kind=exc.kind, err=str(exc))
            return Envelope(success=False, error=str(exc), error_kind=exc.kind)
        except Exception as exc:
            logger.exception("Unexpected error in operation", op=op)
            return Envelope(success=False, error=str(exc) or type(exc).__name__, error_kind="internal")
        return Envelope(success=True, data=to_data(result))

    # --- Local processes ---

    async def start(
        self, project_key: str, instance_id: str, spec: LaunchSpec | Mapping[str, Any]
    ) -> Envelope:
        async def _start() -> Any:
            launch = spec if isinstance(spec, LaunchSpec) else LaunchSpec.from_dict(dict(spec))
            return await self.supervisor.start(project_key, instance_id, launch)

        return await self._call("start", _start)

    async def stop(self, project_key: str, instance_id: str) -> Envelope:
        return await self._call("stop", self.supervisor.stop, project_key, instance_id)

    async def list_running(self) -> Envelope:
        return await self._call("list_running", self.supervisor.list_running)

    async def stream_container_logs(self, container_id: str, project_path: str | None = None) -> Envelope:
        async def _stream() -> dict[str, bool]:
            started = await self.supervisor.container_logs.start(container_id, project_path)
            return {"started": started}

        return await self._call("stream_container_logs", _stream)

    async def stop_container_logs(self, container_id: str) -> Envelope:
        return await self._call(
            "stop_container_logs",
            lambda: {"stopped": self.supervisor.container_logs.stop(container_id)},
        )

    async def inject_env(
        self,
        project_path: str,
        entries: Mapping[str, str] | Iterable[tuple[str, str]],
        file_name: str = ".env",
    ) -> Envelope:
        return await self._call("inject_env", inject_env, project_path, entries, file_name=file_name)

    async def scan_ports(self) -> Envelope:
        return await self._call("scan_ports", scan_listening_ports)

    async def kill_process(self, pid: object, force: bool = False) -> Envelope:
        return await self._call("kill_process", kill_port_process, pid, force=force)

    # --- Local containers ---

    async def check_docker(self, project_path: str | None = None) -> Envelope:
        """Whether docker and compose exist in the context *project_path* lives in."""

        async def _check() -> Any:
            return await runtime.docker_status(resolve(project_path))

        return await self._call("check_docker", _check)

    async def list_containers(self, project_path: str | None = None) -> Envelope:
        async def _list() -> Any:
            return await runtime.list_containers(resolve(project_path))

        return await self._call("list_containers", _list)

    async def container_action(
        self, container_id: str, action: str, project_path: str | None = None
    ) -> Envelope:
        async def _action() -> None:
            await runtime.container_action(resolve(project_path), container_id, action)

        return await self._call("container_action", _action)

    async def list_bridge_environments(self) -> Envelope:
        return await self._call("list_bridge_environments", runtime.list_bridge_environments)

    # --- Remote hosts ---

    async def connect(self, host: HostConfig | Mapping[str, Any]) -> Envelope:
        async def _connect() -> dict[str, str]:
            config = host if isinstance(host, HostConfig) else HostConfig.from_dict(dict(host))
            status = await self.pool.connect(config)
            return {"status": status.value}

        return await self._call("connect", _connect)

    async def disconnect(self, host_id: str) -> Envelope:
        async def _disconnect() -> None:
            await self.pool.disconnect(host_id)

        return await self._call("disconnect", _disconnect)

    async def discover(self, host_id: str) -> Envelope:
        async def _discover() -> Any:
            return await self.discovery.discover(self.pool.require(host_id))

        return await self._call("discover", _discover)

    async def exec(self, host_id: str, command: str, timeout: float | None = None) -> Envelope:
        return await self._call("exec", self.pool.exec, host_id, command, timeout=timeout)

    async def exec_sudo(self, host_id: str, command: str, timeout: float | None = None) -> Envelope:
        return await self._call("exec_sudo", self.pool.exec_sudo, host_id, command, timeout=timeout)

    async def service_action(self, host_id: str, kind: str, name: str, action: str) -> Envelope:
        async def _action() -> str:
            return await service_action(self.pool.require(host_id), kind, name, action)  # type: ignore[arg-type]

        return await self._call("service_action", _action)

    async def service_logs(self, host_id: str, kind: str, name: str, lines: object = 50) -> Envelope:
        async def _logs() -> str:
            return await service_logs(self.pool.require(host_id), kind, name, lines)  # type: ignore[arg-type]

        return await self._call("service_logs", _logs)

    async def save_host(self, host: HostConfig | Mapping[str, Any]) -> Envelope:
        def _save() -> Any:
            config = host if isinstance(host, HostConfig) else HostConfig.from_dict(dict(host))
            return [h.to_dict() for h in self.hosts.save(config)]

        return await self._call("save_host", _save)

    async def delete_host(self, host_id: str) -> Envelope:
        async def _delete() -> Any:
            return [h.to_dict() for h in await self.hosts.delete(host_id)]

        return await self._call("delete_host", _delete)

    async def list_hosts(self) -> Envelope:
        return await self._call("list_hosts", lambda: [h.to_dict() for h in self.hosts.hosts()])

    # --- Lifecycle ---

    async def shutdown(self) -> Envelope:
        """Stop everything; each step runs even if an earlier one failed."""
        failures: list[str] = []
        for step, fn in (
            ("supervisor", self.supervisor.shutdown),
            ("sessions", self.pool.close_all),
            ("events", self.bus.close),
        ):
            try:
                await fn()
            except Exception as exc:
                logger.exception("Shutdown step failed", step=step)
                failures.append(f"{step}: {exc}")
        if failures:
            return Envelope(success=False, error="; ".join(failures), error_kind="internal")
        return Envelope(success=True)
