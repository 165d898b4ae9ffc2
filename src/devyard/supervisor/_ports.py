"""Bound-port sniffing from dev-server output.

Pattern order is load-bearing: the bare URL pattern must win over the
labelled ``Local:`` line, and both over the free-text phrases, so that a
banner mentioning several ports reports the one the server printed first
as its address.
"""

from __future__ import annotations

import re

PORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0):(\d+)"),  # http://localhost:5175
    re.compile(r"Local:\s+https?://[^:]+:(\d+)"),  # Local:   http://host:5175
    re.compile(r"listening (?:on|at) (?:port )?(\d+)", re.IGNORECASE),
    re.compile(r"started (?:on|at) (?:port )?(\d+)", re.IGNORECASE),
    re.compile(r"ready on .*:(\d+)", re.IGNORECASE),
)


def detect_port(text: str) -> int | None:
    """First pattern that matches wins; ``None`` when nothing looks like a port."""
    for pattern in PORT_PATTERNS:
        match = pattern.search(text)
        if match:
            port = int(match.group(1))
            if 0 < port <= 65535:
                return port
            return None
    return None
