"""Context-aware termination.

Every step here is best effort: the target may already be gone, may belong
to another user, or may live in a namespace we can only reach through the
bridge. Failures are logged at debug and never raised.
"""

from __future__ import annotations

import asyncio
import os
import signal

import psutil

from devyard.logger import logger
from devyard.ports import port_holders
from devyard.runtime import bridge_kill_port
from devyard.supervisor._instance import ProcessInstance
from devyard.utils import create_background_task

HAS_PROCESS_GROUPS = hasattr(os, "killpg")


def signal_process_group(pid: int, sig: int = signal.SIGTERM) -> None:
    """Signal the group led by *pid*, then *pid* itself in case it never led one."""
    try:
        os.killpg(pid, sig)
    except (ProcessLookupError, PermissionError) as exc:
        logger.debug("Process group signal failed", pid=pid, err=str(exc))
    try:
        os.kill(pid, sig)
    except (ProcessLookupError, PermissionError) as exc:
        logger.debug("Process signal failed", pid=pid, err=str(exc))


def kill_process_tree(pid: int) -> int:
    """Kill *pid* and all its descendants, children first. Returns the kill count."""
    try:
        parent = psutil.Process(pid)
        victims = [*parent.children(recursive=True), parent]
    except psutil.Error as exc:
        logger.debug("Process tree lookup failed", pid=pid, err=str(exc))
        return 0

    killed = 0
    for proc in victims:
        try:
            proc.kill()
            killed += 1
        except psutil.Error as exc:
            logger.debug("Kill failed", pid=proc.pid, err=str(exc))
    return killed


def free_port(port: int) -> list[int]:
    """Kill whatever currently listens on *port* locally. Returns the pids hit."""
    own = os.getpid()
    hit: list[int] = []
    for pid in port_holders(port):
        if pid == own:
            continue
        try:
            psutil.Process(pid).kill()
            hit.append(pid)
        except psutil.Error as exc:
            logger.debug("Port holder kill failed", port=port, pid=pid, err=str(exc))
    if hit:
        logger.info("Freed port", port=port, pids=hit)
    return hit


async def _free_port_later(instance: ProcessInstance, port: int, grace_delay: float, bridge_timeout: float) -> None:
    await asyncio.sleep(grace_delay)
    if instance.context.is_bridged:
        # Host-side holders of a bridged port are the bridge's own relay;
        # the real holder is only reachable from inside.
        await bridge_kill_port(instance.context, port, timeout_seconds=bridge_timeout)
    else:
        free_port(port)


async def request_termination(
    instance: ProcessInstance,
    *,
    grace_delay: float,
    bridge_kill_timeout: float,
) -> asyncio.Task[None]:
    """Issue the termination sequence for *instance* and schedule the port fallback.

    Returns once termination has been requested; the returned task is the
    delayed port fallback (callers normally don't await it).
    """
    pid = instance.pid
    port = instance.effective_port

    if instance.context.is_bridged:
        # Racy with the host-side kill below; neither ordering is guaranteed
        # to reach every in-bridge descendant.
        result = await bridge_kill_port(instance.context, port, timeout_seconds=bridge_kill_timeout)
        if result.timed_out:
            logger.debug("Bridge kill-by-port timed out", port=port)
        if pid is not None:
            kill_process_tree(pid)
    elif pid is not None and HAS_PROCESS_GROUPS:
        signal_process_group(pid)
    elif pid is not None:
        kill_process_tree(pid)

    return create_background_task(
        _free_port_later(instance, port, grace_delay, bridge_kill_timeout),
        name=f"free-port-{port}",
    )

