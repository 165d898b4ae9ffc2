"""Error taxonomy.

Components raise these; only :mod:`devyard.api` turns them into result
envelopes. ``kind`` is the stable, machine-readable name carried in the
envelope's ``error_kind`` field.
"""

from __future__ import annotations


class DevyardError(Exception):
    kind = "error"


class AlreadyRunningError(DevyardError):
    kind = "already_running"

    def __init__(self, project_key: str, instance_id: str) -> None:
        super().__init__(f'Instance "{instance_id}" is already running')
        self.project_key = project_key
        self.instance_id = instance_id


class InvalidPortError(DevyardError):
    kind = "invalid_port"

    def __init__(self, port: object, low: int = 1024, high: int = 65535) -> None:
        super().__init__(f"Port must be an integer between {low} and {high} (got {port!r})")
        self.port = port


class NotFoundError(DevyardError):
    kind = "not_found"

    def __init__(self, project_key: str, instance_id: str) -> None:
        super().__init__(f'Instance "{instance_id}" is not running')
        self.project_key = project_key
        self.instance_id = instance_id


class ContextResolutionError(DevyardError):
    kind = "context_resolution_failed"


class ToolMissingError(DevyardError):
    """The executable for a launch method is not installed or not on PATH."""

    kind = "tool_missing"

    def __init__(self, tool: str, hint: str = "") -> None:
        msg = f"{tool} not found."
        if hint:
            msg = f"{msg} {hint}"
        super().__init__(msg)
        self.tool = tool


class LaunchError(DevyardError):
    """A spawn or launch-preparation failure other than a missing tool."""

    kind = "launch_failed"


class NotConnectedError(DevyardError):
    kind = "not_connected"

    def __init__(self, host_id: str) -> None:
        super().__init__("Not connected")
        self.host_id = host_id


class TransportError(DevyardError):
    kind = "transport_error"


class RemoteTimeoutError(DevyardError, TimeoutError):
    """No answer within the local deadline. The remote side may still be running."""

    kind = "timeout"


class AuthenticationError(DevyardError):
    kind = "authentication_failed"


class InvalidInputError(DevyardError):
    kind = "invalid_input"


class RemoteCommandError(DevyardError):
    """The remote command ran and exited nonzero (as opposed to timing out)."""

    kind = "command_failed"

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ProcessKillError(DevyardError):
    kind = "kill_failed"


class ContainerCommandError(DevyardError):
    """A local ``docker`` command ran and failed."""

    kind = "container_command_failed"
