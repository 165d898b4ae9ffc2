"""Strip terminal control sequences from process output.

Two shapes are removed:

- regular escape-introduced sequences (CSI ``ESC [ ... final``, the C1 CSI
  byte, ``ESC ( B`` and other two-byte escapes);
- orphaned bracket codes such as ``[32m`` or ``[1;34m`` whose introducing
  ESC byte was dropped on the way through the bridge's console pipe.

An orphaned code needs at least one digit, except the bare reset ``[m``, so
ordinary bracketed text like ``[ERROR]`` or ``items[A]`` passes through
untouched.
"""

from __future__ import annotations

import re

_ESCAPE_RE = re.compile(
    r"(?:\x1b\x5b|\x9b)[\x20-\x3f]*[\x40-\x7e]"
    r"|\x1b[\x20-\x2f]*[\x30-\x7e]"
)
_ORPHAN_RE = re.compile(
    r"\[(?:\d{1,3}(?:;\d{0,3})*)?m"
    r"|\[\d{1,3}(?:;\d{0,3})*[GKHJABCDEFsu]"
)


def _strip_once(text: str) -> str:
    return _ORPHAN_RE.sub("", _ESCAPE_RE.sub("", text))


def sanitize(text: str) -> str:
    """Remove control sequences; ``sanitize(sanitize(x)) == sanitize(x)``.

    Removing one code can splice its neighbours into a new one
    (``[3[32m2m`` -> ``[32m``), so passes repeat until nothing changes.
    Every pass that changes the text shortens it, which bounds the loop.
    """
    while True:
        cleaned = _strip_once(text)
        if cleaned == text:
            return cleaned
        text = cleaned
