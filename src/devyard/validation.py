"""Input validation for identifiers that end up in command lines or paths."""

from __future__ import annotations

import re
from pathlib import Path

from devyard.errors import InvalidInputError

_CONTAINER_ID_RE = re.compile(r"[a-f0-9]{4,64}", re.IGNORECASE)


def validate_container_id(container_id: str) -> str:
    if not isinstance(container_id, str) or not _CONTAINER_ID_RE.fullmatch(container_id):
        raise InvalidInputError("Invalid container ID")
    return container_id


def validate_env_file_name(file_name: str) -> str:
    """Allow ``.env``, ``.env.local`` etc. - never a path."""
    if (
        not isinstance(file_name, str)
        or not file_name.startswith(".env")
        or "/" in file_name
        or "\\" in file_name
        or ".." in file_name
    ):
        raise InvalidInputError(f"Invalid env file name: {file_name!r}")
    return file_name


def resolve_inside(project_path: str | Path, relative: str) -> Path:
    """Join *relative* onto the project and refuse anything that escapes it."""
    root = Path(project_path).resolve()
    target = (root / relative).resolve()
    if not target.is_relative_to(root):
        raise InvalidInputError(f"Path escapes project root: {relative!r}")
    return target


def safe_remote_name(name: str, *, extra: str = "") -> str:
    """Reduce a remote service/container name to ``[A-Za-z0-9_.-]`` (+ *extra*)."""
    cleaned = re.sub(rf"[^a-zA-Z0-9_.{re.escape(extra)}-]", "", name or "")
    if not cleaned:
        raise InvalidInputError(f"Invalid name: {name!r}")
    return cleaned


def clamp_lines(lines: object, *, default: int = 50, maximum: int = 200) -> int:
    try:
        n = int(lines)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return default
    if n <= 0:
        return default
    return min(n, maximum)
