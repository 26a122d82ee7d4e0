"""
Timing helpers for observability.

- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations safely.

    Yields a mutable details dict so the block can attach outcome fields
    (e.g. attempts) before the metric is emitted.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block are not suppressed; they are recorded
      under details["error"]

    Usage:
        with timed("asr_connect", session_id=sid) as info:
            ws = await connect(...)
            info["attempts"] = 2
    """
    info: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    try:
        yield info
    except BaseException as e:
        info["error"] = type(e).__name__
        raise
    finally:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "session_id": session_id,
            "details": info,
        })
