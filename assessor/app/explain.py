from __future__ import annotations

"""Milestone tracing (Explain Mode).

Enabled with the CLI `--explain` flag; prints one terse JSON line per
session milestone.
"""

import json
import sys
from typing import Any, Dict, TextIO

_ENABLED = False
_STREAM: TextIO = sys.stdout


def enable(flag: bool = True, stream: TextIO | None = None) -> None:
    global _ENABLED, _STREAM
    _ENABLED = bool(flag)
    if stream is not None:
        _STREAM = stream


def enabled() -> bool:
    return _ENABLED


def trace(event: str, payload: Dict[str, Any] | None = None) -> None:
    if not _ENABLED:
        return
    try:
        line = json.dumps(payload or {}, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        line = "{}"
    print(f"[EXPLAIN] {event} :: {line}", file=_STREAM)
