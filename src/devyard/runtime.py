"""Container runtime and bridge-helper probing, per execution context.

Docker (and its compose front-end) may be installed on the host, inside the
nested Linux environment, or both. Every check here takes the context the
project lives in and asks the right side.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from typing import Any

from devyard.context import BRIDGE_HELPER, bridge_argv, shell_quote
from devyard.errors import ContainerCommandError, InvalidInputError, ToolMissingError
from devyard.logger import logger
from devyard.remote._parsers import parse_container_lines
from devyard.types import NATIVE, ExecutionContext
from devyard.utils import CommandResult, run_command
from devyard.validation import validate_container_id

CONTAINER_CLI = "docker"
_PROBE_TIMEOUT = 5.0
CONTAINER_ACTIONS = ("start", "stop", "restart", "rm")


@dataclass(frozen=True)
class ComposeCommand:
    """How to invoke compose: ``docker compose`` (plugin) or ``docker-compose``."""

    cmd: str
    prefix_args: tuple[str, ...] = ()

    def argv(self, *args: str) -> list[str]:
        return [self.cmd, *self.prefix_args, *args]

    def __str__(self) -> str:
        return " ".join(self.argv())


PLUGIN_COMPOSE = ComposeCommand("docker", ("compose",))
STANDALONE_COMPOSE = ComposeCommand("docker-compose")


async def run_in_bridge(
    context: ExecutionContext,
    script: str,
    *,
    timeout_seconds: float = _PROBE_TIMEOUT,
) -> CommandResult:
    """Run *script* in a login shell inside the bridge (no cwd change)."""
    return await run_command(bridge_argv(context, script, cd=False), timeout_seconds=timeout_seconds)


async def _check(context: ExecutionContext, *argv: str) -> bool:
    if context.is_bridged:
        result = await run_in_bridge(context, " ".join(argv))
    else:
        result = await run_command(argv, timeout_seconds=_PROBE_TIMEOUT)
    return result.ok


async def container_cli_available(context: ExecutionContext = NATIVE) -> bool:
    if not context.is_bridged:
        return shutil.which(CONTAINER_CLI) is not None
    return await _check(context, CONTAINER_CLI, "--version")


async def compose_command(context: ExecutionContext = NATIVE) -> ComposeCommand | None:
    """Detect the compose front-end, preferring the docker plugin."""
    if await _check(context, "docker", "compose", "version"):
        return PLUGIN_COMPOSE
    if await _check(context, "docker-compose", "--version"):
        return STANDALONE_COMPOSE
    logger.debug("No compose command found", bridged=context.is_bridged)
    return None


async def docker_status(context: ExecutionContext = NATIVE) -> dict[str, Any]:
    """``{"docker": bool, "compose": "docker compose" | "docker-compose" | None}``."""
    available = await container_cli_available(context)
    compose = await compose_command(context) if available else None
    return {"docker": available, "compose": str(compose) if compose else None}


async def run_container_cli(
    context: ExecutionContext, *args: str, timeout_seconds: float = _PROBE_TIMEOUT
) -> CommandResult:
    """``docker <args>`` on whichever side of the bridge *context* points at."""
    argv = [CONTAINER_CLI, *args]
    if context.is_bridged:
        script = " ".join(shell_quote(arg) for arg in argv)
        return await run_in_bridge(context, script, timeout_seconds=timeout_seconds)
    return await run_command(argv, timeout_seconds=timeout_seconds)


def _require_ok(result: CommandResult, what: str) -> CommandResult:
    if result.ok:
        return result
    if result.start_error:
        detail = result.start_error
    elif result.timed_out:
        detail = "timed out"
    else:
        detail = result.stderr.strip() or f"exit code {result.returncode}"
    raise ContainerCommandError(f"{what} failed: {detail}")


async def list_containers(context: ExecutionContext = NATIVE) -> list[dict[str, Any]]:
    if not await container_cli_available(context):
        raise ToolMissingError(CONTAINER_CLI, "Install Docker to manage containers.")
    result = await run_container_cli(
        context, "ps", "-a", "--format", "{{json .}}", timeout_seconds=10
    )
    return parse_container_lines(_require_ok(result, "docker ps").stdout)


async def container_action(context: ExecutionContext, container_id: str, action: str) -> None:
    if action not in CONTAINER_ACTIONS:
        raise InvalidInputError(f"Invalid action: {action!r}")
    validate_container_id(container_id)
    args = ["rm", "-f", container_id] if action == "rm" else [action, container_id]
    result = await run_container_cli(context, *args, timeout_seconds=15)
    _require_ok(result, f"docker {action}")
    logger.info("Container action done", container=container_id, action=action)


async def bridge_kill_port(
    context: ExecutionContext,
    port: int,
    *,
    timeout_seconds: float = 5.0,
) -> CommandResult:
    """Ask the bridge to kill whatever listens on *port*.

    Processes started inside the nested environment are not visible to
    host-side signals; only the in-environment ``fuser`` can reach them.
    """
    return await run_in_bridge(
        context,
        f"fuser -k {int(port)}/tcp 2>/dev/null; exit 0",
        timeout_seconds=timeout_seconds,
    )


async def list_bridge_environments() -> list[str]:
    """Names of installed nested environments (empty when the helper is absent)."""
    if shutil.which(BRIDGE_HELPER) is None:
        return []
    result = await run_command([BRIDGE_HELPER, "-l", "-q"], timeout_seconds=_PROBE_TIMEOUT)
    if not result.ok:
        return []
    # wsl.exe writes UTF-16; decoded as UTF-8 that leaves NULs between chars
    return [line.strip() for line in result.stdout.replace("\0", "").splitlines() if line.strip()]


def container_image_name(project_path: str) -> str:
    """Image tag used for Dockerfile-only projects (no compose definition)."""
    base = re.split(r"[\\/]", project_path.rstrip("\\/"))[-1]
    slug = re.sub(r"[^a-z0-9_.-]", "", base.lower()) or "project"
    return f"devyard-{slug}"
