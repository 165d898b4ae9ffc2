"""Subprocess plumbing shared by supervised instances and container log streams."""

from __future__ import annotations

import asyncio
import codecs
from asyncio.subprocess import DEVNULL, PIPE
from collections.abc import Callable

from devyard.context import BRIDGE_HELPER, translate
from devyard.errors import LaunchError
from devyard.supervisor._launch import tool_missing
from devyard.supervisor._signals import HAS_PROCESS_GROUPS
from devyard.types import ExecutionContext, SpawnOptions

CHUNK_SIZE = 8192


async def pump(stream: asyncio.StreamReader | None, on_text: Callable[[str], None]) -> None:
    """Feed decoded chunks from *stream* to *on_text* until EOF.

    Decoding is incremental so a multi-byte character split across two
    reads is not mangled.
    """
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            tail = decoder.decode(b"", final=True)
            if tail:
                on_text(tail)
            return
        text = decoder.decode(chunk)
        if text:
            on_text(text)


async def spawn_in_context(
    tool: str,
    command: str,
    args: list[str],
    options: SpawnOptions,
) -> tuple[asyncio.subprocess.Process, ExecutionContext]:
    """Translate and spawn with piped output, in its own process group where supported.

    A missing executable becomes :class:`ToolMissingError` naming *tool* (or
    the bridge helper when the command was routed through it); any other
    spawn failure surfaces verbatim as :class:`LaunchError`.
    """
    invocation = translate(command, args, options)
    try:
        proc = await asyncio.create_subprocess_exec(
            *invocation.argv,
            cwd=invocation.cwd,
            env=invocation.env,
            stdin=DEVNULL,
            stdout=PIPE,
            stderr=PIPE,
            start_new_session=HAS_PROCESS_GROUPS,
        )
    except FileNotFoundError as exc:
        if invocation.cwd is not None and exc.filename == invocation.cwd:
            raise LaunchError(str(exc)) from exc
        raise tool_missing(BRIDGE_HELPER if invocation.context.is_bridged else tool) from exc
    except OSError as exc:
        raise LaunchError(str(exc)) from exc
    return proc, invocation.context
