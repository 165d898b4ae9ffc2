"""Listening-socket tables and local port probes.

The ``ss`` parser is shared with remote discovery, which reads the same
table over SSH. When the platform tool is missing or reports nothing, the
scan falls back to connect probes against a fixed list of common dev ports;
those rows carry no process information.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import sys

import psutil

from devyard.errors import InvalidInputError, ProcessKillError
from devyard.logger import logger
from devyard.types import ListeningSocket
from devyard.utils import run_command

COMMON_DEV_PORTS = (
    80, 443, 1337, 3000, 3001, 3002, 3003, 3333, 4000, 4200, 4321, 4433,
    5000, 5001, 5050, 5173, 5174, 5500, 5555, 6006, 6379, 8000, 8001,
    8080, 8081, 8443, 8888, 9000, 9090, 9229, 19006, 24678, 27017,
)

_PID_RE = re.compile(r"pid=(\d+)")
_NAME_RE = re.compile(r'\("([^"]+)"')


def _split_addr(column: str) -> tuple[str, int] | None:
    """``0.0.0.0:80`` / ``[::]:443`` / ``*:22`` -> (address, port)."""
    address, sep, port = column.rpartition(":")
    if not sep:
        return None
    try:
        return address, int(port)
    except ValueError:
        return None


def parse_ss_output(stdout: str) -> list[ListeningSocket]:
    """Parse ``ss -tlnp``: address:port in column 4, process descriptor after."""
    results: list[ListeningSocket] = []
    lines = [line for line in stdout.splitlines() if line.strip()]
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 5:
            continue
        split = _split_addr(parts[3])
        if split is None:
            continue
        address, port = split
        descriptor = " ".join(parts[5:])
        pid_match = _PID_RE.search(descriptor)
        name_match = _NAME_RE.search(descriptor)
        results.append(
            ListeningSocket(
                port=port,
                address=address,
                process_name=name_match.group(1) if name_match else None,
                pid=int(pid_match.group(1)) if pid_match else None,
            )
        )
    return results


def parse_lsof_output(stdout: str) -> list[ListeningSocket]:
    """Parse ``lsof -iTCP -sTCP:LISTEN -n -P`` (macOS)."""
    results: list[ListeningSocket] = []
    lines = [line for line in stdout.splitlines() if line.strip()]
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 9:
            continue
        split = _split_addr(parts[8])
        if split is None:
            continue
        address, port = split
        try:
            pid: int | None = int(parts[1])
        except ValueError:
            pid = None
        results.append(ListeningSocket(port=port, address=address, process_name=parts[0], pid=pid))
    return results


def parse_netstat_output(stdout: str) -> list[ListeningSocket]:
    """Parse ``netstat -ano`` (Windows); process names are filled in via psutil."""
    results: list[ListeningSocket] = []
    for line in stdout.splitlines():
        if "LISTENING" not in line:
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        split = _split_addr(parts[1])
        if split is None:
            continue
        address, port = split
        try:
            pid: int | None = int(parts[-1])
        except ValueError:
            pid = None
        results.append(
            ListeningSocket(port=port, address=address, process_name=_process_name(pid), pid=pid)
        )
    return results


def _process_name(pid: int | None) -> str | None:
    if pid is None:
        return None
    try:
        return psutil.Process(pid).name()
    except psutil.Error:
        return None


async def scan_listening_ports() -> list[ListeningSocket]:
    """List TCP listeners on this machine using the platform's native tool."""
    if sys.platform == "win32":
        argv, parser = ["netstat", "-ano"], parse_netstat_output
    elif sys.platform == "darwin":
        argv, parser = ["lsof", "-iTCP", "-sTCP:LISTEN", "-n", "-P"], parse_lsof_output
    else:
        argv, parser = ["ss", "-tlnp"], parse_ss_output

    result = await run_command(argv, timeout_seconds=10)
    if result.start_error or result.timed_out:
        logger.warning(
            "Port scan failed, probing common ports",
            tool=argv[0],
            err=result.start_error,
            timed_out=result.timed_out,
        )
        return await probe_common_ports()
    sockets = parser(result.stdout)
    return sockets or await probe_common_ports()


async def probe_common_ports(ports: tuple[int, ...] = COMMON_DEV_PORTS) -> list[ListeningSocket]:
    open_flags = await asyncio.gather(*(probe_port(port) for port in ports))
    return [
        ListeningSocket(port=port, address="127.0.0.1")
        for port, is_open in zip(ports, open_flags, strict=True)
        if is_open
    ]


async def probe_port(port: int, *, host: str = "127.0.0.1", timeout: float = 0.2) -> bool:
    """True when something accepts TCP connections on *port*."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


def port_holders(port: int) -> list[int]:
    """PIDs currently listening on TCP *port* on this machine."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.AccessDenied, OSError) as exc:
        logger.debug("Cannot enumerate connections", port=port, err=str(exc))
        return []
    return sorted(
        {
            conn.pid
            for conn in connections
            if conn.pid and conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN
        }
    )


def kill_port_process(pid: object, *, force: bool = False) -> None:
    """Terminate a process picked from the port table.

    Refuses anything that is not a positive pid, pid 1 and devyard itself.
    On Windows the whole tree goes, mirroring ``taskkill /T /F``.
    """
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise InvalidInputError("Invalid PID")
    if pid <= 1 or pid == os.getpid():
        raise InvalidInputError("Cannot kill this process")

    try:
        proc = psutil.Process(pid)
        if sys.platform == "win32":
            for victim in [*proc.children(recursive=True), proc]:
                victim.kill()
        elif force:
            proc.kill()
        else:
            proc.terminate()
    except psutil.NoSuchProcess as exc:
        raise ProcessKillError(f"No such process: {pid}") from exc
    except psutil.Error as exc:
        raise ProcessKillError(f"Cannot kill process {pid}: {exc}") from exc
    logger.info("Killed port process", pid=pid, force=force)
