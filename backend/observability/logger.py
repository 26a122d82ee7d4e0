"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from enum import Enum
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def now_ms() -> int:
    """Wall-clock timestamp for log correlation."""
    return int(time.time() * 1000)


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies a fully-formed event dict (event_type, session_id,
    ...). A missing ts_ms is filled in.

    Never raises: bytes are rendered as their length, anything else that
    json cannot serialize falls back to a LOGGER_SERIALIZATION_ERROR event.
    """
    payload = dict(event)
    payload.setdefault("ts_ms", now_ms())
    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=_default)
    except (TypeError, ValueError) as e:
        # Last-resort fallback, logging must never crash a session
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def _default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
