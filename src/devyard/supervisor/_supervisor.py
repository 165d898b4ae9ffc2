"""ProcessSupervisor - registry owner for launched dev processes.

An instance enters the registry once its process has been spawned and
leaves it exactly once, from the watcher task that observes the process
exit. ``stop`` only requests termination; the exit event is the only proof
of death.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from functools import partial
from typing import TypeAlias

from devyard.collaborators import (
    ComposeParser,
    FileManifestInspector,
    LogNotificationSink,
    ManifestInspector,
    NotificationSink,
    YamlComposeParser,
)
from devyard.config import SupervisorConfig, get_settings
from devyard.context import resolve, translate
from devyard.errors import AlreadyRunningError, InvalidPortError, LaunchError, NotFoundError
from devyard.event_bus import EventBus, LogData, PortChanged, ProcessStopped
from devyard.logger import logger
from devyard.sanitizer import sanitize
from devyard.supervisor._container_logs import ContainerLogStreams
from devyard.supervisor._instance import InstanceState, ProcessInstance
from devyard.supervisor._launch import LaunchPlan, plan_launch
from devyard.supervisor._ports import detect_port
from devyard.supervisor._signals import request_termination
from devyard.supervisor._streams import pump, spawn_in_context
from devyard.types import ExecutionContext, LaunchSpec, SpawnOptions, StartResult
from devyard.utils import create_background_task, run_command

Identity: TypeAlias = tuple[str, str]

_DIGITS_RE = re.compile(r"^\s*\d+\s*$")


class ProcessSupervisor:
    def __init__(
        self,
        bus: EventBus,
        *,
        notifier: NotificationSink | None = None,
        compose_parser: ComposeParser | None = None,
        manifest_inspector: ManifestInspector | None = None,
        config: SupervisorConfig | None = None,
    ) -> None:
        self._bus = bus
        self._notifier = notifier or LogNotificationSink()
        self._compose_parser = compose_parser or YamlComposeParser()
        self._manifest_inspector = manifest_inspector or FileManifestInspector()
        self._config = config or get_settings().supervisor
        self._instances: dict[Identity, ProcessInstance] = {}
        self._pending: set[Identity] = set()
        self._watchers: dict[Identity, asyncio.Task[None]] = {}
        self.container_logs = ContainerLogStreams(bus, tail=self._config.container_log_tail)

    # --- Queries ---

    def get(self, project_key: str, instance_id: str) -> ProcessInstance | None:
        return self._instances.get((project_key, instance_id))

    def __len__(self) -> int:
        return len(self._instances)

    def list_running(self) -> dict[str, dict[str, dict[str, object]]]:
        """``{project_key: {instance_id: {port, method, pid}}}``."""
        running: dict[str, dict[str, dict[str, object]]] = {}
        for (project_key, instance_id), instance in self._instances.items():
            running.setdefault(project_key, {})[instance_id] = instance.summary()
        return running

    def validate_port(self, raw: object) -> int:
        low, high = self._config.min_port, self._config.max_port
        if isinstance(raw, bool):
            raise InvalidPortError(raw, low, high)
        if isinstance(raw, int):
            port = raw
        elif isinstance(raw, str) and _DIGITS_RE.match(raw):
            port = int(raw)
        else:
            raise InvalidPortError(raw, low, high)
        if not low <= port <= high:
            raise InvalidPortError(raw, low, high)
        return port

    # --- Start ---

    async def start(self, project_key: str, instance_id: str, spec: LaunchSpec) -> StartResult:
        """Launch an instance and register it.

        The identity is reserved before the first await, so a concurrent
        start for the same identity fails with AlreadyRunningError instead
        of racing to spawn a second process.
        """
        identity = (project_key, instance_id)
        if identity in self._instances or identity in self._pending:
            raise AlreadyRunningError(project_key, instance_id)
        port = self.validate_port(spec.requested_port)

        self._pending.add(identity)
        try:
            context = resolve(spec.cwd)
            plan = await plan_launch(
                spec, port, context, self._compose_parser, self._manifest_inspector
            )
            if plan.build:
                await self._run_build(identity, plan, spec.cwd)
            proc, context = await spawn_in_context(
                plan.tool, plan.command, plan.args, SpawnOptions(cwd=spec.cwd, env=plan.env)
            )
            instance = ProcessInstance(
                project_key=project_key,
                instance_id=instance_id,
                context=context,
                handle=proc,
                requested_port=port,
                method=spec.method,
                cwd=spec.cwd,
                background=spec.background,
                teardown=plan.teardown,
            )
            instance.transition(InstanceState.RUNNING)
            self._instances[identity] = instance
        finally:
            self._pending.discard(identity)

        self._watchers[identity] = asyncio.create_task(
            self._watch(instance), name=f"watch-{project_key}-{instance_id}"
        )
        logger.info(
            "Instance started",
            project=project_key,
            instance=instance_id,
            pid=proc.pid,
            port=port,
            method=spec.method,
            bridged=context.is_bridged,
        )
        if not spec.background:
            self._notify("Service starting", f"{instance_id} launched on port {port}", silent=True)
        return StartResult(pid=proc.pid, port=port)

    async def _run_build(self, identity: Identity, plan: LaunchPlan, cwd: str) -> None:
        """Run the pre-launch build, relaying its output under the instance's identity."""
        assert plan.build is not None
        proc, _ = await spawn_in_context(
            plan.tool, plan.build[0], plan.build[1:], SpawnOptions(cwd=cwd)
        )
        relay = partial(self._relay_log, identity)
        await asyncio.gather(pump(proc.stdout, relay), pump(proc.stderr, relay))
        code = await proc.wait()
        if code != 0:
            raise LaunchError(f"Container build failed with exit code {code}")

    # --- Output and exit ---

    def _relay_log(self, identity: Identity, text: str) -> None:
        project_key, instance_id = identity
        self._bus.emit(LogData(project_key=project_key, instance_id=instance_id, data=sanitize(text)))

    def _on_output(self, instance: ProcessInstance, text: str) -> None:
        clean = sanitize(text)
        if not instance.port_locked:
            port = detect_port(clean)
            if port is not None and instance.lock_port(port):
                logger.info(
                    "Port detected",
                    project=instance.project_key,
                    instance=instance.instance_id,
                    requested=instance.requested_port,
                    observed=port,
                )
                self._bus.emit(
                    PortChanged(
                        project_key=instance.project_key,
                        instance_id=instance.instance_id,
                        port=port,
                    )
                )
        self._bus.emit(
            LogData(project_key=instance.project_key, instance_id=instance.instance_id, data=clean)
        )

    async def _watch(self, instance: ProcessInstance) -> None:
        handle = instance.handle
        on_text = partial(self._on_output, instance)
        try:
            await asyncio.gather(pump(handle.stdout, on_text), pump(handle.stderr, on_text))
            returncode = await handle.wait()
        except Exception as exc:
            logger.exception(
                "Output reader failed",
                project=instance.project_key,
                instance=instance.instance_id,
            )
            with contextlib.suppress(ProcessLookupError):
                handle.kill()
            self._finalize(instance, None, error=str(exc))
            return
        # Negative return codes mean "killed by signal": no exit status
        self._finalize(instance, returncode if returncode >= 0 else None)

    def _finalize(self, instance: ProcessInstance, code: int | None, *, error: str | None = None) -> None:
        identity = instance.identity
        if self._instances.get(identity) is instance:
            del self._instances[identity]
        if self._watchers.get(identity) is asyncio.current_task():
            del self._watchers[identity]

        if error is not None and not (instance.stop_requested or instance.background):
            state = InstanceState.CRASHED
        else:
            state = instance.exit_state(code)
        instance.transition(state)

        logger.info(
            "Instance exited",
            project=instance.project_key,
            instance=instance.instance_id,
            code=code,
            state=str(state),
        )
        if error is not None:
            self._bus.emit(
                LogData(
                    project_key=instance.project_key,
                    instance_id=instance.instance_id,
                    data=f"Process error: {error}\n",
                )
            )
        self._bus.emit(
            ProcessStopped(
                project_key=instance.project_key,
                instance_id=instance.instance_id,
                code=code,
                background=instance.background,
                error=error,
            )
        )
        if state is InstanceState.CRASHED:
            detail = error if error is not None else f"exited with code {code}"
            self._notify("Process crashed", f"{instance.instance_id} {detail}")

    # --- Stop ---

    async def stop(self, project_key: str, instance_id: str) -> None:
        """Request termination. Returns before the process is confirmed dead."""
        instance = self._instances.get((project_key, instance_id))
        if instance is None:
            raise NotFoundError(project_key, instance_id)

        instance.stop_requested = True
        if instance.state is not InstanceState.STOPPING:
            instance.transition(InstanceState.STOPPING)
        if instance.teardown:
            create_background_task(
                self._run_teardown(instance.context, instance.cwd, instance.teardown),
                name=f"teardown-{instance_id}",
            )
        logger.info(
            "Stopping instance",
            project=project_key,
            instance=instance_id,
            pid=instance.pid,
            port=instance.effective_port,
        )
        await request_termination(
            instance,
            grace_delay=self._config.grace_delay,
            bridge_kill_timeout=self._config.bridge_kill_timeout,
        )

    async def _run_teardown(self, context: ExecutionContext, cwd: str, argv: list[str]) -> None:
        invocation = translate(argv[0], argv[1:], SpawnOptions(cwd=cwd))
        result = await run_command(
            invocation.argv, cwd=invocation.cwd, timeout_seconds=self._config.teardown_timeout
        )
        if not result.ok:
            logger.debug(
                "Teardown did not succeed",
                command=" ".join(argv),
                bridged=context.is_bridged,
                code=result.returncode,
                err=result.start_error or result.stderr.strip()[:200],
            )

    # --- Shutdown ---

    async def _shutdown_one(self, instance: ProcessInstance) -> None:
        instance.stop_requested = True
        if instance.state is InstanceState.RUNNING:
            instance.transition(InstanceState.STOPPING)
        if instance.teardown:
            await self._run_teardown(instance.context, instance.cwd, instance.teardown)
        fallback = await request_termination(
            instance,
            grace_delay=self._config.grace_delay,
            bridge_kill_timeout=self._config.bridge_kill_timeout,
        )
        await fallback

    async def shutdown(self) -> None:
        """Terminate every instance, clear the registry and stop log followers.

        One instance failing to terminate never prevents the others from
        being attempted.
        """
        instances = list(self._instances.values())
        if instances:
            logger.info("Stopping all instances", count=len(instances))
        results = await asyncio.gather(
            *(self._shutdown_one(instance) for instance in instances),
            return_exceptions=True,
        )
        for instance, result in zip(instances, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Termination failed during shutdown",
                    project=instance.project_key,
                    instance=instance.instance_id,
                    err=str(result),
                )

        self._instances.clear()
        watchers = list(self._watchers.values())
        self._watchers.clear()
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)
        await self.container_logs.drain()

    def _notify(self, title: str, body: str, *, silent: bool = False) -> None:
        if not self._config.notifications:
            return
        try:
            self._notifier.notify(title, body, silent=silent)
        except Exception as exc:
            logger.warning("Notification failed", title=title, err=str(exc))
