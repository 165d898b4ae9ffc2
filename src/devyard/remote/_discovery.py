"""DiscoveryPipeline - one concurrent battery of read-only probes per host.

Each probe carries its own timeout and failure boundary: a probe that
errors, times out or returns garbage contributes an empty result, and the
snapshot is built from whatever the others returned.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from devyard.config import RemoteConfig, get_settings
from devyard.context import shell_quote
from devyard.logger import logger
from devyard.remote._parsers import (
    SERVICE_KEYWORDS,
    parse_container_lines,
    parse_find_output,
    parse_os_release,
    parse_process_manager_list,
    parse_proxy_sites,
    parse_screen_sessions,
    parse_service_units,
    parse_ss_output,
)
from devyard.remote._tags import derive_tags
from devyard.types import (
    ExecResult,
    HostInventorySnapshot,
    ListeningSocket,
    MultiplexerSession,
    OsInfo,
    ProjectRoot,
    ProxySite,
    ServiceUnit,
)

PROJECT_MANIFESTS = (
    "package.json",
    "requirements.txt",
    "composer.json",
    "go.mod",
    "Cargo.toml",
    "Gemfile",
    "pom.xml",
)
EXCLUDED_DIRS = ("node_modules", ".git")


class ProbeTarget(Protocol):
    """What a probe needs from a session (see remote._pool.RemoteSession)."""

    host_id: str
    password: str

    async def run(self, command: str, *, timeout: float, stdin: str | None = None) -> ExecResult: ...

    async def run_sudo(
        self, command: str, *, timeout: float, password: str | None = None
    ) -> ExecResult: ...


def project_scan_command(roots: list[str], depth: int) -> str:
    names = " -o ".join(f"-name {name}" for name in PROJECT_MANIFESTS)
    excludes = " ".join(f'-not -path "*/{d}/*"' for d in EXCLUDED_DIRS)
    quoted_roots = " ".join(shell_quote(r) for r in roots)
    return f"find {quoted_roots} -maxdepth {int(depth)} \\( {names} \\) {excludes} 2>/dev/null"


class DiscoveryPipeline:
    def __init__(self, config: RemoteConfig | None = None) -> None:
        self._config = config or get_settings().remote

    # --- Probes ---

    async def probe_os(self, session: ProbeTarget) -> OsInfo:
        result = await session.run(
            'cat /etc/os-release 2>/dev/null || echo "ID=unknown"',
            timeout=self._config.probe_timeout,
        )
        return parse_os_release(result.stdout)

    async def probe_containers(self, session: ProbeTarget) -> list[dict[str, Any]]:
        result = await session.run(
            "docker ps -a --format '{{json .}}' 2>/dev/null", timeout=self._config.probe_timeout
        )
        if result.exit_code != 0:
            return []
        return parse_container_lines(result.stdout)

    async def probe_process_manager(self, session: ProbeTarget) -> list[dict[str, Any]]:
        """``pm2 jlist`` as the login user, then as root when a password is known.

        Processes started via ``sudo pm2`` only show up in root's daemon.
        """
        result = await session.run("pm2 jlist 2>/dev/null", timeout=self._config.probe_timeout)
        if result.exit_code == 0 and result.stdout.strip():
            entries = parse_process_manager_list(result.stdout)
            if entries:
                return entries
        if not session.password:
            return []
        sudo = await session.run_sudo("pm2 jlist 2>/dev/null", timeout=self._config.sudo_probe_timeout)
        if sudo.exit_code != 0 or not sudo.stdout.strip():
            return []
        return parse_process_manager_list(sudo.stdout)

    async def probe_multiplexer(self, session: ProbeTarget) -> list[MultiplexerSession]:
        result = await session.run("screen -ls 2>/dev/null", timeout=self._config.probe_timeout)
        return parse_screen_sessions(result.stdout)

    async def probe_services(self, session: ProbeTarget) -> list[ServiceUnit]:
        result = await session.run(
            "systemctl list-units --type=service --no-pager --no-legend 2>/dev/null"
            f" | grep -iE '{SERVICE_KEYWORDS}'",
            timeout=self._config.probe_timeout,
        )
        return parse_service_units(result.stdout)

    async def probe_proxy_sites(self, session: ProbeTarget) -> list[ProxySite]:
        result = await session.run(
            "cat /etc/nginx/sites-enabled/* /etc/nginx/conf.d/*.conf 2>/dev/null",
            timeout=self._config.probe_timeout,
        )
        return parse_proxy_sites(result.stdout)

    async def probe_listening(self, session: ProbeTarget) -> list[ListeningSocket]:
        result = await session.run("ss -tlnp 2>/dev/null", timeout=self._config.probe_timeout)
        return parse_ss_output(result.stdout)

    async def probe_projects(self, session: ProbeTarget) -> list[ProjectRoot]:
        command = project_scan_command(self._config.project_scan_roots, self._config.project_scan_depth)
        result = await session.run(command, timeout=self._config.project_scan_timeout)
        return parse_find_output(result.stdout)

    # --- Pipeline ---

    async def discover(self, session: ProbeTarget) -> HostInventorySnapshot:
        """Run all probes concurrently and fold them into one snapshot."""
        (
            os_info,
            containers,
            process_manager,
            multiplexer,
            services,
            proxy_sites,
            listening,
            projects,
        ) = await asyncio.gather(
            _settle("os", session, self.probe_os(session), OsInfo),
            _settle("containers", session, self.probe_containers(session), list),
            _settle("process_manager", session, self.probe_process_manager(session), list),
            _settle("multiplexer", session, self.probe_multiplexer(session), list),
            _settle("services", session, self.probe_services(session), list),
            _settle("proxy_sites", session, self.probe_proxy_sites(session), list),
            _settle("listening", session, self.probe_listening(session), list),
            _settle("projects", session, self.probe_projects(session), list),
        )
        snapshot = HostInventorySnapshot(
            os=os_info,
            containers=containers,
            process_manager=process_manager,
            multiplexer=multiplexer,
            services=services,
            proxy_sites=proxy_sites,
            listening=listening,
            projects=projects,
        )
        snapshot.tags = derive_tags(snapshot)
        logger.info(
            "Host discovered",
            host=session.host_id,
            os=snapshot.os.name,
            containers=len(containers),
            services=len(services),
            projects=len(projects),
            tags=snapshot.tags,
        )
        return snapshot


async def _settle(
    name: str, session: ProbeTarget, probe: Awaitable[Any], empty: Callable[[], Any]
) -> Any:
    try:
        return await probe
    except Exception as exc:
        logger.debug("Discovery probe failed", probe=name, host=session.host_id, err=str(exc))
        return empty()
