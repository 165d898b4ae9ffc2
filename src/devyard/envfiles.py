"""Upsert ``KEY=value`` lines into a project's ``.env*`` file."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from devyard.errors import InvalidInputError
from devyard.validation import resolve_inside, validate_env_file_name

_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.\-]*")


def _entries(entries: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    pairs = list(entries.items()) if isinstance(entries, Mapping) else list(entries)
    for key, value in pairs:
        if not _KEY_RE.fullmatch(key):
            raise InvalidInputError(f"Invalid env key: {key!r}")
        if "\n" in str(value) or "\r" in str(value):
            raise InvalidInputError(f"Env value for {key} spans lines")
    return [(k, str(v)) for k, v in pairs]


def upsert_lines(content: str, entries: Mapping[str, str] | Iterable[tuple[str, str]]) -> str:
    """Replace the first ``KEY=...`` line per key, or append it; other lines are kept."""
    for key, value in _entries(entries):
        pattern = re.compile(rf"^{re.escape(key)}=.*$", re.MULTILINE)
        line = f"{key}={value}"
        if pattern.search(content):
            content = pattern.sub(lambda _m: line, content, count=1)
        else:
            if content and not content.endswith("\n"):
                content += "\n"
            content += line + "\n"
    return content


def inject_env(
    project_path: str,
    entries: Mapping[str, str] | Iterable[tuple[str, str]],
    *,
    file_name: str = ".env",
) -> str:
    """Write *entries* into ``<project>/<file_name>``; returns the file path."""
    validate_env_file_name(file_name)
    target = resolve_inside(project_path, file_name)
    try:
        content = target.read_text(encoding="utf-8")
    except FileNotFoundError:
        content = ""
    target.write_text(upsert_lines(content, entries), encoding="utf-8")
    return str(target)
