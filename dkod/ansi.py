"""ANSI escape-sequence stripping for captured tool output.

Tool output often arrives colourised. CSI sequences (``ESC [ ... letter``)
and the minimal OSC subset (``ESC ] ... BEL``) are removed at parse time so
stored sessions stay clean. Model output is deliberately left alone.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = ["strip_ansi", "strip_ansi_in_json"]

_ESC = "\x1b"
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07]*\x07")


def strip_ansi(text: str) -> str:
    """Remove CSI and OSC escape sequences from ``text``. Idempotent."""
    if _ESC not in text:
        return text
    return _ANSI_RE.sub("", text)


def strip_ansi_in_json(value: Any) -> Any:
    """Return ``value`` with ANSI stripped from every string leaf.

    Lists and dicts are rebuilt recursively; other values come back as-is.
    """
    if isinstance(value, str):
        return strip_ansi(value)
    if isinstance(value, list):
        return [strip_ansi_in_json(item) for item in value]
    if isinstance(value, dict):
        return {key: strip_ansi_in_json(item) for key, item in value.items()}
    return value