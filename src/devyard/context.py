"""Execution contexts - native OS vs. a nested Linux environment behind a bridge.

A project that lives under ``\\\\wsl$\\<distro>\\...`` (or the newer
``\\\\wsl.localhost\\<distro>\\...``) has to be run *inside* that distro:
the Windows side sees the files, but the toolchain (node, version managers,
docker CLI) is installed in the Linux side. :func:`translate` rewrites a
``(command, args, options)`` triple into a ``wsl.exe`` invocation that cds
into the translated path and runs the command through a login shell.

:func:`resolve` and :func:`translate` are string work only: no filesystem
access, no processes.
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

from devyard.errors import ContextResolutionError
from devyard.types import NATIVE, ExecutionContext, Invocation, SpawnOptions

BRIDGE_HELPER = "wsl.exe"

_BRIDGE_MARKER_RE = re.compile(r"^\\\\wsl", re.IGNORECASE)
_BRIDGE_PATH_RE = re.compile(r"^\\\\wsl(?:\$|\.localhost)\\([^\\]+)(.*)$", re.IGNORECASE)
_SAFE_ARG_RE = re.compile(r"^[a-zA-Z0-9._\-/=:@]+$")


def is_bridge_path(path: str | None) -> bool:
    return bool(path) and _BRIDGE_MARKER_RE.match(path) is not None  # type: ignore[arg-type]


def resolve(path: str | None) -> ExecutionContext:
    r"""Classify *path*.

    ``\\wsl$\Ubuntu\home\me\app`` -> bridged(``Ubuntu``, ``/home/me/app``).
    Anything without the UNC marker is native. A path that carries the
    marker but no distro segment raises :class:`ContextResolutionError`
    rather than silently running on the host.
    """
    if not is_bridge_path(path):
        return NATIVE
    match = _BRIDGE_PATH_RE.match(path)  # type: ignore[arg-type]
    if match is None:
        raise ContextResolutionError(f"Cannot resolve bridged path: {path}")
    inner = match.group(2).replace("\\", "/") or "/"
    return ExecutionContext(kind="bridged", bridge_id=match.group(1), translated_path=inner)


def shell_quote(value: str) -> str:
    """Quote one argument for the inner POSIX shell.

    Conservative-safe strings pass through bare; everything else is wrapped
    in single quotes with embedded quotes written as ``'\\''``.
    """
    if _SAFE_ARG_RE.match(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def bridge_argv(context: ExecutionContext, script: str, *, cd: bool = True) -> list[str]:
    """Argument vector that runs *script* in a login shell inside the bridge."""
    argv = [BRIDGE_HELPER, "-d", str(context.bridge_id)]
    if cd and context.translated_path:
        argv += ["--cd", context.translated_path]
    return [*argv, "--", "bash", "-lic", script]


def translate(
    command: str,
    args: list[str],
    options: SpawnOptions,
    *,
    ambient_env: Mapping[str, str] | None = None,
) -> Invocation:
    """Rewrite a command for the context its working directory lives in.

    Native: returned unchanged. Bridged: wrapped in ``wsl.exe -d <distro>
    --cd <inner> -- bash -lic "<exports> && <cmd> <quoted args>"``. Only
    env vars whose value differs from *ambient_env* (default: this
    process's environment) are exported; forwarding the whole environment
    through the bridge breaks on Windows-specific values.
    """
    context = resolve(options.cwd)
    if not context.is_bridged:
        return Invocation(
            program=command,
            args=list(args),
            cwd=options.cwd,
            env=options.env,
            context=context,
        )

    ambient = os.environ if ambient_env is None else ambient_env
    exports = [
        f"export {key}={shell_quote(value)}"
        for key, value in (options.env or {}).items()
        if ambient.get(key) != value
    ]
    command_line = " ".join([command, *(shell_quote(a) for a in args)])
    script = " && ".join([*exports, command_line])

    argv = bridge_argv(context, script)
    return Invocation(program=argv[0], args=argv[1:], cwd=None, env=None, context=context)


@lru_cache(maxsize=1)
def running_inside_bridge() -> bool:
    """True when devyard itself runs inside a WSL distro."""
    if sys.platform != "linux":
        return False
    try:
        version = Path("/proc/version").read_text(encoding="utf-8")
    except OSError:
        return False
    return re.search(r"microsoft|wsl", version, re.IGNORECASE) is not None
