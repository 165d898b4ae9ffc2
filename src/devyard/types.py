"""Data models for devyard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Literal

from devyard.errors import InvalidInputError

LaunchMethod = Literal["process-manager", "container"]


# ---------------------------------------------------------------------------
# Execution contexts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionContext:
    kind: Literal["native", "bridged"] = "native"
    bridge_id: str | None = None  # nested environment name (e.g. a WSL distro)
    translated_path: str | None = None  # path inside the nested environment

    @property
    def is_bridged(self) -> bool:
        return self.kind == "bridged"


NATIVE = ExecutionContext()


@dataclass
class SpawnOptions:
    cwd: str | None = None
    env: dict[str, str] | None = None


@dataclass
class Invocation:
    """A command ready to hand to the OS, after context translation."""

    program: str
    args: list[str]
    cwd: str | None
    env: dict[str, str] | None
    context: ExecutionContext = NATIVE

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


# ---------------------------------------------------------------------------
# Launch requests
# ---------------------------------------------------------------------------


@dataclass
class LaunchSpec:
    requested_port: Any  # validated by the supervisor; callers may pass strings
    method: LaunchMethod
    cwd: str
    background: bool = False
    container_services: list[str] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LaunchSpec:
        if not raw.get("cwd"):
            raise InvalidInputError("cwd is required")
        return cls(
            requested_port=raw.get("requested_port", raw.get("port")),
            method=raw.get("method", "process-manager"),
            cwd=raw["cwd"],
            background=bool(raw.get("background", False)),
            container_services=raw.get("container_services"),
        )


@dataclass
class StartResult:
    pid: int | None
    port: int


# ---------------------------------------------------------------------------
# Remote hosts
# ---------------------------------------------------------------------------


@dataclass
class HostConfig:
    id: str
    host: str
    username: str
    port: int = 22
    auth_type: Literal["password", "key"] = "password"
    password: str | None = None
    encrypted_password: str | None = None  # secret-store reference, see remote._secrets
    private_key: str | None = None  # inline key material
    private_key_path: str | None = None
    passphrase: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> HostConfig:
        known = {f for f in cls.__dataclass_fields__}
        missing = [f for f in ("id", "host", "username") if not raw.get(f)]
        if missing:
            raise InvalidInputError(f"Host is missing {', '.join(missing)}")
        return cls(**{k: v for k, v in raw.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ConnectStatus(StrEnum):
    CONNECTED = "connected"
    ALREADY_CONNECTED = "already_connected"


@dataclass
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int | None  # None when the remote side reported no exit status


# ---------------------------------------------------------------------------
# Host inventory
# ---------------------------------------------------------------------------


@dataclass
class OsInfo:
    name: str = "Unknown"
    id: str = "unknown"
    version: str = ""


@dataclass
class MultiplexerSession:
    name: str
    state: str


@dataclass
class ServiceUnit:
    unit: str
    load: str = ""
    active: str = ""
    sub: str = ""
    description: str = ""


@dataclass
class ProxySite:
    server_name: str = ""
    root: str = ""
    proxy_pass: str = ""


@dataclass
class ListeningSocket:
    port: int
    address: str
    process_name: str | None = None
    pid: int | None = None


@dataclass
class ProjectRoot:
    path: str
    manifests: list[str] = field(default_factory=list)


@dataclass
class HostInventorySnapshot:
    os: OsInfo = field(default_factory=OsInfo)
    containers: list[dict[str, Any]] = field(default_factory=list)
    process_manager: list[dict[str, Any]] = field(default_factory=list)
    multiplexer: list[MultiplexerSession] = field(default_factory=list)
    services: list[ServiceUnit] = field(default_factory=list)
    proxy_sites: list[ProxySite] = field(default_factory=list)
    listening: list[ListeningSocket] = field(default_factory=list)
    projects: list[ProjectRoot] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
