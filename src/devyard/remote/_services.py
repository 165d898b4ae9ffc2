"""Actions and log tails for services found by discovery.

Three managers are supported: the process manager (pm2), containers
(docker) and the service manager (systemd). Names are reduced to a safe
character set before they reach a command line.
"""

from __future__ import annotations

from typing import Literal, TypeAlias

from devyard.errors import InvalidInputError, RemoteCommandError
from devyard.remote._discovery import ProbeTarget
from devyard.types import ExecResult
from devyard.validation import clamp_lines, safe_remote_name

ServiceKind: TypeAlias = Literal["process-manager", "container", "service-manager"]

ALLOWED_ACTIONS: dict[str, tuple[str, ...]] = {
    "process-manager": ("restart", "stop", "delete"),
    "container": ("start", "stop", "restart"),
    "service-manager": ("start", "stop", "restart"),
}

_ACTION_TIMEOUTS = {"process-manager": 15.0, "container": 30.0, "service-manager": 15.0}
_LOG_TIMEOUT = 10.0


def _safe_name(kind: str, name: str) -> str:
    # systemd template units carry an '@'
    return safe_remote_name(name, extra="@" if kind == "service-manager" else "")


async def exec_then_sudo(session: ProbeTarget, command: str, *, timeout: float) -> ExecResult:
    """Run unprivileged; on any failure retry through sudo if a password is known."""
    result = await session.run(f"{command} 2>&1", timeout=timeout)
    if result.exit_code == 0 or not session.password:
        return result
    return await session.run_sudo(f"{command} 2>&1", timeout=timeout)


def _check(result: ExecResult) -> str:
    if result.exit_code != 0:
        message = result.stderr.strip() or result.stdout.strip() or "Command failed"
        raise RemoteCommandError(message, result.exit_code)
    return result.stdout


async def service_action(session: ProbeTarget, kind: ServiceKind, name: str, action: str) -> str:
    allowed = ALLOWED_ACTIONS.get(kind)
    if allowed is None:
        raise InvalidInputError(f"Unknown service kind: {kind}")
    if action not in allowed:
        raise InvalidInputError("Invalid action")
    safe = _safe_name(kind, name)
    timeout = _ACTION_TIMEOUTS[kind]

    match kind:
        case "process-manager":
            return _check(await exec_then_sudo(session, f"pm2 {action} {safe}", timeout=timeout))
        case "container":
            return _check(await exec_then_sudo(session, f"docker {action} {safe}", timeout=timeout))
        case _:
            # Unit control always needs root
            return _check(await session.run_sudo(f"systemctl {action} {safe} 2>&1", timeout=timeout))


async def service_logs(session: ProbeTarget, kind: ServiceKind, name: str, lines: object = 50) -> str:
    if kind not in ALLOWED_ACTIONS:
        raise InvalidInputError(f"Unknown service kind: {kind}")
    safe = _safe_name(kind, name)
    n = clamp_lines(lines)

    match kind:
        case "process-manager":
            result = await exec_then_sudo(
                session, f"pm2 logs {safe} --nostream --lines {n}", timeout=_LOG_TIMEOUT
            )
            return result.stdout or result.stderr or "No logs"
        case "container":
            result = await exec_then_sudo(session, f"docker logs --tail {n} {safe}", timeout=_LOG_TIMEOUT)
            return result.stdout or result.stderr or "No logs"
        case _:
            result = await session.run(
                f"journalctl -u {safe} --no-pager -n {n} 2>&1", timeout=_LOG_TIMEOUT
            )
            return result.stdout or "No logs"
