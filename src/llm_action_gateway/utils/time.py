"""Timestamps for audit entries and action durations."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with offset."""
    return datetime.now(tz=timezone.utc).isoformat()


def elapsed_ms(started: float) -> int:
    """Whole milliseconds since ``started``, a :func:`time.perf_counter` reading."""
    return max(0, int((time.perf_counter() - started) * 1000))
