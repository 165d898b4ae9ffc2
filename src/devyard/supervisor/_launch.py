"""Launch planning - turn a LaunchSpec into the command lines to run.

Two methods:
  process-manager - ``npm run <script> -- <port flags>`` with PORT/HOST exported
  container       - ``<compose> up`` when a compose definition exists,
                    otherwise ``docker build`` followed by ``docker run``

Plans are plain data; the supervisor does the spawning so that every
command (including build and teardown) goes through context translation.
"""

from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path

from devyard.collaborators import ComposeParser, FileManifestInspector, ManifestInspector
from devyard.context import running_inside_bridge
from devyard.errors import InvalidInputError, LaunchError, ToolMissingError
from devyard.logger import logger
from devyard.runtime import CONTAINER_CLI, compose_command, container_image_name
from devyard.types import ExecutionContext, LaunchSpec

SCRIPT_PRIORITY = ("dev", "start", "serve")
BIND_ALL = "0.0.0.0"

TOOL_HINTS = {
    "npm": "Install Node.js/npm to use this launch method.",
    "docker": "Install Docker to use this launch method.",
    "docker compose": (
        "Install the docker compose plugin (docker compose) or standalone docker-compose."
    ),
}

_VITE_RE = re.compile(r"\bvite\b")
_NEXT_RE = re.compile(r"\bnext\b")


@dataclass
class LaunchPlan:
    tool: str  # executable named in the missing-tool error
    command: str
    args: list[str]
    env: dict[str, str] | None = None
    build: list[str] | None = None  # must exit 0 before the main command starts
    teardown: list[str] | None = None


def tool_missing(tool: str) -> ToolMissingError:
    return ToolMissingError(tool, TOOL_HINTS.get(tool, ""))


def pick_script(scripts: dict[str, str]) -> tuple[str, str] | None:
    """``dev`` > ``start`` > ``serve`` > first declared script."""
    for name in SCRIPT_PRIORITY:
        if scripts.get(name):
            return name, scripts[name]
    for name, body in scripts.items():
        return name, body
    return None


def port_flags(script_body: str, port: int, *, needs_host: bool) -> list[str]:
    """Framework-specific flags appended after ``--``."""
    if _VITE_RE.search(script_body):
        flags = ["--port", str(port)]
        if needs_host:
            flags += ["--host", BIND_ALL]
        return flags
    if _NEXT_RE.search(script_body):
        flags = ["-p", str(port)]
        if needs_host:
            flags += ["-H", BIND_ALL]
        return flags
    # Most other frameworks read PORT from the environment
    return ["--port", str(port)]


def _read_scripts(cwd: str) -> dict[str, str]:
    try:
        manifest = json.loads((Path(cwd) / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise LaunchError("Failed to read package.json scripts") from exc
    scripts = manifest.get("scripts") if isinstance(manifest, dict) else None
    if not isinstance(scripts, dict):
        return {}
    return {str(k): str(v) for k, v in scripts.items()}


def plan_process_manager(spec: LaunchSpec, port: int, context: ExecutionContext) -> LaunchPlan:
    picked = pick_script(_read_scripts(spec.cwd))
    if picked is None:
        raise LaunchError("No npm scripts found in package.json")
    script_name, script_body = picked

    # Inside a nested environment the host's port proxy only forwards ports
    # bound on all interfaces.
    needs_host = context.is_bridged or running_inside_bridge()
    command = "npm.cmd" if sys.platform == "win32" and not context.is_bridged else "npm"
    args = ["run", script_name, "--", *port_flags(script_body, port, needs_host=needs_host)]

    env = {**os.environ, "PORT": str(port)}
    if needs_host:
        env["HOST"] = BIND_ALL

    logger.info(
        "Planned npm launch",
        cwd=spec.cwd,
        script=script_name,
        command=" ".join([command, *args]),
    )
    return LaunchPlan(tool="npm", command=command, args=args, env=env)


def _check_compose_services(
    compose_parser: ComposeParser, compose_file: Path, requested: list[str] | None
) -> None:
    """Reject requested services the compose file does not define.

    An unreadable compose file defines nothing we can check against, so the
    request goes through and compose reports the problem itself.
    """
    if not requested:
        return
    known = {service.name for service in compose_parser.parse(compose_file)}
    unknown = [name for name in requested if name not in known]
    if known and unknown:
        raise InvalidInputError(f"Unknown compose service(s): {', '.join(unknown)}")


async def plan_container(
    spec: LaunchSpec,
    port: int,
    context: ExecutionContext,
    compose_parser: ComposeParser,
    inspector: ManifestInspector,
) -> LaunchPlan:
    compose_file = compose_parser.find(spec.cwd)
    if compose_file is not None:
        _check_compose_services(compose_parser, compose_file, spec.container_services)
        compose = await compose_command(context)
        if compose is None:
            raise tool_missing("docker compose")
        args = [*compose.prefix_args, "up"]
        if spec.background:
            args.append("-d")
        args += list(spec.container_services or [])
        return LaunchPlan(
            tool="docker compose",
            command=compose.cmd,
            args=args,
            teardown=compose.argv("down"),
        )

    if not inspector.inspect(spec.cwd).has_container_def:
        raise LaunchError("No Dockerfile or compose file found")
    image = container_image_name(spec.cwd)
    return LaunchPlan(
        tool=CONTAINER_CLI,
        command=CONTAINER_CLI,
        # --name lets the teardown address the container by the image tag
        args=["run", "--rm", "--name", image, "-p", f"{port}:{port}", image],
        build=[CONTAINER_CLI, "build", "-t", image, "."],
        teardown=[CONTAINER_CLI, "stop", image],
    )


async def plan_launch(
    spec: LaunchSpec,
    port: int,
    context: ExecutionContext,
    compose_parser: ComposeParser,
    inspector: ManifestInspector | None = None,
) -> LaunchPlan:
    match spec.method:
        case "process-manager":
            return plan_process_manager(spec, port, context)
        case "container":
            return await plan_container(
                spec, port, context, compose_parser, inspector or FileManifestInspector()
            )
        case _:
            raise InvalidInputError(f"Unknown launch method: {spec.method}")
