"""Parsers for the text the discovery probes bring back.

Every parser is total: malformed input yields fewer (or zero) records,
never an exception.
"""

from __future__ import annotations

import json
import re
from typing import Any

from devyard.ports import parse_ss_output
from devyard.types import MultiplexerSession, OsInfo, ProjectRoot, ProxySite, ServiceUnit

__all__ = [
    "SERVICE_KEYWORDS",
    "parse_container_lines",
    "parse_find_output",
    "parse_os_release",
    "parse_process_manager_list",
    "parse_proxy_sites",
    "parse_screen_sessions",
    "parse_service_units",
    "parse_ss_output",
]

SERVICE_KEYWORDS = (
    "nginx|apache|httpd|php-fpm|mysql|mariadb|postgres|redis|mongodb|mongod|nodejs|node-"
    "|pm2|docker|supervisord|gunicorn|uvicorn|memcached|rabbitmq|elasticsearch"
)
_SERVICE_RE = re.compile(SERVICE_KEYWORDS, re.IGNORECASE)
_SCREEN_RE = re.compile(r"\t(\S+)\s+\((\w+)\)")
_SERVER_OPEN_RE = re.compile(r"^server\s*\{")
_SERVER_NAME_RE = re.compile(r"server_name\s+(.+);")
_ROOT_RE = re.compile(r"root\s+(.+);")
_PROXY_PASS_RE = re.compile(r"proxy_pass\s+(.+);")


def parse_os_release(stdout: str) -> OsInfo:
    info = OsInfo()
    for line in stdout.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        value = value.strip().strip('"')
        match key.strip():
            case "PRETTY_NAME":
                info.name = value
            case "ID":
                info.id = value
            case "VERSION_ID":
                info.version = value
    return info


def parse_container_lines(stdout: str) -> list[dict[str, Any]]:
    """One JSON object per line (``docker ps --format '{{json .}}'``); bad lines skipped."""
    containers: list[dict[str, Any]] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(record, dict):
            containers.append(record)
    return containers


def parse_process_manager_list(stdout: str) -> list[dict[str, Any]]:
    """``pm2 jlist`` output: a JSON array; anything else is empty."""
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def parse_screen_sessions(stdout: str) -> list[MultiplexerSession]:
    sessions = []
    for line in stdout.splitlines():
        match = _SCREEN_RE.search(line)
        if match:
            sessions.append(MultiplexerSession(name=match.group(1), state=match.group(2)))
    return sessions


def parse_service_units(stdout: str) -> list[ServiceUnit]:
    """``systemctl list-units --no-legend`` rows whose line mentions a known keyword."""
    units = []
    for line in stdout.splitlines():
        if not line.strip() or not _SERVICE_RE.search(line):
            continue
        # Failed units are prefixed with a bullet marker
        parts = line.strip().lstrip("●*").split()
        if not parts:
            continue
        parts += [""] * (4 - len(parts))
        units.append(
            ServiceUnit(
                unit=parts[0],
                load=parts[1],
                active=parts[2],
                sub=parts[3],
                description=" ".join(parts[4:]),
            )
        )
    return units


def parse_proxy_sites(stdout: str) -> list[ProxySite]:
    """Line scanner over concatenated nginx site files.

    ``server {`` opens a record; a line that is exactly ``}`` closes it once a
    server name has been seen. Nested blocks are not tracked: the first bare
    ``}`` after ``server_name`` ends the record.
    """
    sites: list[ProxySite] = []
    current: ProxySite | None = None
    for raw in stdout.splitlines():
        line = raw.strip()
        if _SERVER_OPEN_RE.match(line):
            current = ProxySite()
        if current is None:
            continue
        if match := _SERVER_NAME_RE.search(line):
            current.server_name = match.group(1)
        if match := _ROOT_RE.search(line):
            current.root = match.group(1)
        if match := _PROXY_PASS_RE.search(line):
            current.proxy_pass = match.group(1)
        if line == "}" and current.server_name:
            sites.append(current)
            current = None
    return sites


def parse_find_output(stdout: str) -> list[ProjectRoot]:
    """Group manifest paths by their containing directory, in first-seen order."""
    roots: dict[str, list[str]] = {}
    for line in stdout.splitlines():
        path = line.strip()
        if not path or "/" not in path:
            continue
        directory, _, manifest = path.rpartition("/")
        roots.setdefault(directory or "/", []).append(manifest)
    return [ProjectRoot(path=directory, manifests=manifests) for directory, manifests in roots.items()]
