"""Contracts for the collaborators the core talks to, plus default implementations.

The core never inspects manifests, parses compose files, persists settings
or shows notifications itself; it goes through these protocols so an outer
shell (desktop app, CLI, tests) can supply its own.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from devyard.logger import logger
from devyard.utils import write_json_atomic

MANIFEST_FILES = (
    "package.json",
    "requirements.txt",
    "pyproject.toml",
    "setup.py",
    "go.mod",
    "Cargo.toml",
    "composer.json",
    "Gemfile",
    "pom.xml",
    "build.gradle",
    "build.gradle.kts",
)
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml")
CONTAINER_FILES = (*COMPOSE_FILES, "Dockerfile")


@dataclass
class ManifestInfo:
    has_manifest: bool = False
    has_container_def: bool = False


@dataclass
class ComposeService:
    name: str
    ports: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


@runtime_checkable
class ManifestInspector(Protocol):
    def inspect(self, directory: str) -> ManifestInfo: ...


@runtime_checkable
class ComposeParser(Protocol):
    def find(self, directory: str) -> Path | None: ...
    def parse(self, path: Path) -> list[ComposeService]: ...


@runtime_checkable
class SettingsStore(Protocol):
    def load(self) -> dict[str, Any]: ...
    def save(self, partial: dict[str, Any]) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, title: str, body: str, silent: bool = False) -> None: ...


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class FileManifestInspector:
    """Presence checks only; unreadable directories count as empty."""

    def inspect(self, directory: str) -> ManifestInfo:
        root = Path(directory)
        try:
            return ManifestInfo(
                has_manifest=any((root / name).is_file() for name in MANIFEST_FILES),
                has_container_def=any((root / name).is_file() for name in CONTAINER_FILES),
            )
        except OSError:
            return ManifestInfo()


class YamlComposeParser:
    def find(self, directory: str) -> Path | None:
        for name in COMPOSE_FILES:
            candidate = Path(directory) / name
            try:
                if candidate.is_file():
                    return candidate
            except OSError:
                return None
        return None

    def parse(self, path: Path) -> list[ComposeService]:
        """Service name, published ports and dependencies; [] on any read/parse error."""
        try:
            doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.debug("Compose file unreadable", path=str(path), err=str(exc))
            return []
        services = doc.get("services") if isinstance(doc, dict) else None
        if not isinstance(services, dict):
            return []

        parsed: list[ComposeService] = []
        for name, body in services.items():
            body = body if isinstance(body, dict) else {}
            depends = body.get("depends_on") or []
            if isinstance(depends, dict):
                depends = list(depends)
            parsed.append(
                ComposeService(
                    name=str(name),
                    ports=[str(p) for p in body.get("ports") or []],
                    depends_on=[str(d) for d in depends],
                )
            )
        return parsed


class JsonSettingsStore:
    """Shallow-merging JSON document on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Settings file unreadable, using defaults", path=str(self.path), err=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, partial: dict[str, Any]) -> None:
        merged = {**self.load(), **partial}
        write_json_atomic(self.path, merged, indent=2)


class LogNotificationSink:
    """Sends notifications to the log when no desktop surface is attached."""

    def notify(self, title: str, body: str, silent: bool = False) -> None:
        logger.info(title, body=body, silent=silent)
