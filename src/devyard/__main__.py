"""Entry point for `python -m devyard` / `devyard`.

Subcommands:
    devyard run PATH --port N [--method M]   Launch a project and follow its output
    devyard ports                            List local listening sockets
    devyard discover HOST_ID                 Connect to a saved host and print its inventory
    devyard exec HOST_ID COMMAND...          Run one command on a saved host
    devyard hosts                            List saved hosts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from devyard.api import DevyardCore, Envelope
from devyard.config import get_settings
from devyard.event_bus import LogData, PortChanged, ProcessStopped


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(envelope: Envelope) -> int:
    print(f"Error: {envelope.error}", file=sys.stderr)
    return 1


async def _run(path: str, port: int, method: str, instance_id: str) -> int:
    core = DevyardCore()
    done = asyncio.Event()
    exit_code = 0

    async def on_log(event: LogData) -> None:
        sys.stdout.write(event.data)
        sys.stdout.flush()

    async def on_port(event: PortChanged) -> None:
        print(f"[devyard] {event.instance_id} is serving on port {event.port}", file=sys.stderr)

    async def on_stopped(event: ProcessStopped) -> None:
        nonlocal exit_code
        exit_code = event.code or 0
        done.set()

    core.bus.subscribe(LogData, on_log)
    core.bus.subscribe(PortChanged, on_port)
    core.bus.subscribe(ProcessStopped, on_stopped)

    started = await core.start(path, instance_id, {"port": port, "method": method, "cwd": path})
    if not started.success:
        await core.shutdown()
        return _fail(started)
    print(f"[devyard] started pid {started.data['pid']} on port {started.data['port']}", file=sys.stderr)

    try:
        await done.wait()
    finally:
        await core.shutdown()
    return exit_code


async def _with_host(host_id: str, action: str, command: str = "") -> int:
    core = DevyardCore()
    try:
        listed = await core.list_hosts()
        hosts = {h["id"]: h for h in (listed.data or [])}
        if host_id not in hosts:
            print(f"Error: no saved host {host_id!r}", file=sys.stderr)
            return 1
        connected = await core.connect(hosts[host_id])
        if not connected.success:
            return _fail(connected)

        match action:
            case "discover":
                result = await core.discover(host_id)
                if not result.success:
                    return _fail(result)
                _print_json(result.data)
                return 0
            case _:
                result = await core.exec(host_id, command)
                if not result.success:
                    return _fail(result)
                sys.stdout.write(result.data["stdout"])
                sys.stderr.write(result.data["stderr"])
                return result.data["exit_code"] or 0
    finally:
        await core.shutdown()


async def _ports() -> int:
    result = await DevyardCore().scan_ports()
    if not result.success:
        return _fail(result)
    for sock in sorted(result.data, key=lambda s: s["port"]):
        owner = f"{sock['process_name'] or '?'} ({sock['pid'] or '-'})"
        print(f"{sock['address']}:{sock['port']}\t{owner}")
    return 0


async def _hosts() -> int:
    result = await DevyardCore().list_hosts()
    if not result.success:
        return _fail(result)
    for host in result.data:
        label = host.get("name") or host["id"]
        print(f"{host['id']}\t{label}\t{host['username']}@{host['host']}:{host.get('port', 22)}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="devyard",
        description="Launch and supervise dev projects, inspect remote hosts",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Launch a project and follow its output")
    run.add_argument("path", help="Project directory (UNC paths into WSL are supported)")
    run.add_argument("--port", type=int, required=True)
    run.add_argument(
        "--method", choices=["process-manager", "container"], default="process-manager"
    )
    run.add_argument("--instance", default="default", help="Instance id (default: default)")

    sub.add_parser("ports", help="List local listening sockets")

    discover = sub.add_parser("discover", help="Print a saved host's inventory")
    discover.add_argument("host_id")

    exec_ = sub.add_parser("exec", help="Run a command on a saved host")
    exec_.add_argument("host_id")
    exec_.add_argument("remote_command", nargs=argparse.REMAINDER)

    sub.add_parser("hosts", help="List saved hosts")

    args = parser.parse_args()
    logging.getLogger().setLevel(get_settings().logging.level)

    match args.command:
        case "run":
            code = asyncio.run(_run(args.path, args.port, args.method, args.instance))
        case "ports":
            code = asyncio.run(_ports())
        case "discover":
            code = asyncio.run(_with_host(args.host_id, "discover"))
        case "exec":
            code = asyncio.run(_with_host(args.host_id, "exec", " ".join(args.remote_command)))
        case _:
            code = asyncio.run(_hosts())
    sys.exit(code)


if __name__ == "__main__":
    main()
