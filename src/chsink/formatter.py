from __future__ import annotations

import json
from typing import Any, MutableMapping, Optional

from .errors import SerializationError


class RecordFormatter:
    """
    Turns one record into one JSONEachRow line.

    If ``datetime_name`` is set, the record gets that field set to the event
    timestamp shifted by ``tz_offset`` minutes (epoch seconds) before it is
    serialized. The record is mutated in place.

    Usage:
        fmt = RecordFormatter(tz_offset=180, datetime_name="event_time")
        line = fmt.format(1700000000, {"level": "info", "msg": "hi"})
    """

    def __init__(self, tz_offset: int = 0, datetime_name: Optional[str] = None):
        self.tz_offset = int(tz_offset)
        self.datetime_name = datetime_name or None

    def shifted(self, timestamp: int | float) -> int:
        return int(timestamp) + self.tz_offset * 60

    def format(self, timestamp: int | float, record: MutableMapping[str, Any]) -> str:
        if self.datetime_name:
            record[self.datetime_name] = self.shifted(timestamp)
        return dumps_line(record)


def dumps_line(record: MutableMapping[str, Any]) -> str:
    """Compact JSON + a single newline. NaN/Infinity and unknown types are rejected."""
    try:
        return json.dumps(record, separators=(",", ":"), ensure_ascii=False, allow_nan=False) + "\n"
    except (TypeError, ValueError) as e:
        raise SerializationError(f"record is not JSON serializable: {e}") from e
