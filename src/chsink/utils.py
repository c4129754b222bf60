"""
Utility functions for the ClickHouse sink.

Includes NDJSON input helpers, event-time extraction and retry backoff.
"""

import json
import random
import sys
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional, Tuple


def epoch_now() -> int:
    """Current time as integer epoch seconds."""
    return int(time.time())


def iter_ndjson(
    path: str, on_error: Optional[Callable[[int, ValueError], None]] = None
) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """
    Yield ``(lineno, object)`` per non-blank line of ``path`` ("-" reads stdin).

    A line that is not JSON, or not a JSON object, raises ValueError prefixed
    with ``path:lineno``. With ``on_error`` set, the error is passed to it
    together with the line number and reading continues.
    """
    fh = sys.stdin if path == "-" else open(path, "r", encoding="utf-8")
    try:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
                if not isinstance(obj, dict):
                    raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
            except ValueError as e:
                err = ValueError(f"{path}:{lineno}: {e}")
                if on_error is None:
                    raise err from e
                on_error(lineno, err)
                continue
            yield lineno, obj
    finally:
        if fh is not sys.stdin:
            fh.close()


def event_time(record: Dict[str, Any], time_key: Optional[str]) -> int:
    """
    Epoch seconds for a record.

    Uses ``record[time_key]`` when present (epoch number or ISO-8601 string),
    the current time otherwise. The key itself is left in the record.
    """
    if not time_key or record.get(time_key) is None:
        return epoch_now()
    value = record[time_key]
    if isinstance(value, (int, float)):
        return int(value)
    return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp())


def calculate_retry_delay(
    attempt: int, base_delay_ms: int = 1000, max_delay_ms: int = 30000, jitter: bool = True
) -> float:
    """
    Calculate retry delay with exponential backoff and optional jitter.

    Args:
        attempt: Current attempt number (0-based)
        base_delay_ms: Base delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        jitter: Add random jitter to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay_ms = min(base_delay_ms * (2**attempt), max_delay_ms)

    if jitter:
        # ±25%
        jitter_range = delay_ms * 0.25
        delay_ms += random.uniform(-jitter_range, jitter_range)

    return max(0, delay_ms / 1000.0)
