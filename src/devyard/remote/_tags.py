"""Capability tags derived from a host inventory snapshot.

Rules are evaluated in table order against the snapshot and the tags
produced so far; the output keeps that order. A rule may decline to add a
tag another rule already added, which is the only deduplication done.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import TypeAlias

from devyard.types import HostInventorySnapshot

Rule: TypeAlias = tuple[str, Callable[[HostInventorySnapshot, list[str]], bool]]


def _unit_matches(pattern: str) -> Callable[[HostInventorySnapshot, list[str]], bool]:
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda snap, _tags: any(regex.search(s.unit) for s in snap.services)


def _has_manifest(name: str, *, unless_tagged: str | None = None) -> Callable[[HostInventorySnapshot, list[str]], bool]:
    def rule(snap: HostInventorySnapshot, tags: list[str]) -> bool:
        if unless_tagged is not None and unless_tagged in tags:
            return False
        return any(name in p.manifests for p in snap.projects)

    return rule


TAG_RULES: tuple[Rule, ...] = (
    ("Docker", lambda snap, _: bool(snap.containers)),
    ("PM2", lambda snap, _: bool(snap.process_manager)),
    ("screen", lambda snap, _: bool(snap.multiplexer)),
    ("nginx", lambda snap, _: bool(snap.proxy_sites)),
    ("PHP", _unit_matches(r"php-fpm")),
    ("MySQL", _unit_matches(r"mysql|mariadb")),
    ("PostgreSQL", _unit_matches(r"postgres")),
    ("Redis", _unit_matches(r"redis")),
    ("MongoDB", _unit_matches(r"mongodb|mongod")),
    ("Apache", _unit_matches(r"apache|httpd")),
    ("Node.js", _unit_matches(r"nodejs|node-")),
    ("Node.js", _has_manifest("package.json", unless_tagged="Node.js")),
    ("Python", _has_manifest("requirements.txt")),
    ("PHP", _has_manifest("composer.json", unless_tagged="PHP")),
    ("Go", _has_manifest("go.mod")),
)


def derive_tags(snapshot: HostInventorySnapshot) -> list[str]:
    tags: list[str] = []
    for tag, applies in TAG_RULES:
        if applies(snapshot, tags):
            tags.append(tag)
    return tags
