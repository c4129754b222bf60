from __future__ import annotations

import time
from dataclasses import dataclass
from time import monotonic
from typing import Any, Callable, List, MutableMapping, Optional

from loguru import logger

from .errors import PermanentFailure, RetryableFailure, SerializationError
from .metrics import SERIALIZATION_FAILURES_TOTAL
from .models import Permanent, Retryable, Silent
from .sink import ClickHouseSink
from .utils import calculate_retry_delay


@dataclass(frozen=True)
class BatchConfig:
    """Flush thresholds plus the retry budget for retryable dispositions."""

    max_rows: int = 1000  # flush after N buffered lines
    max_ms: int = 5000  # or after this many ms since the last flush
    max_bytes: int = 1_048_576  # or after ~1MB of serialized payload
    retry_attempts: int = 3  # re-deliveries after the first attempt
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 30000


class BatchProcessor:
    """
    Dead-simple sync scheduler in front of a ClickHouseSink.

    Retryable dispositions are retried with backoff; once the budget is spent
    the lines stay buffered and RetryableFailure is raised, so a later flush
    re-sends them (at-least-once). Permanent dispositions raise
    PermanentFailure and also keep the lines. Silent ones clear the buffer.

    Usage:
        sink = ClickHouseSink(load_settings(host="ch", table="events"))
        bp = BatchProcessor(sink, BatchConfig(max_rows=2000))
        for ts, rec in events:
            bp.add("app.events", ts, rec)
        bp.close()  # final flush
    """

    def __init__(
        self,
        sink: ClickHouseSink,
        config: Optional[BatchConfig] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._sink = sink
        self._cfg = config or BatchConfig()
        self._sleep = sleep
        self._t0 = monotonic()

        self._lines: List[str] = []
        self._bytes = 0

        self.delivered_rows = 0
        self.dropped_rows = 0
        self.rejected_records = 0

    @property
    def pending_rows(self) -> int:
        return len(self._lines)

    # --------------------------- public API

    def add(self, tag: Optional[str], timestamp: int | float, record: MutableMapping[str, Any]) -> bool:
        """Format and buffer one record. Returns False if it was rejected as unserializable."""
        try:
            line = self._sink.format(tag, timestamp, record)
        except SerializationError as e:
            self.rejected_records += 1
            SERIALIZATION_FAILURES_TOTAL.inc()
            logger.error(f"Dropping record (tag={tag}): {e}")
            return False
        self._lines.append(line)
        self._bytes += len(line.encode("utf-8"))
        self._maybe_flush()
        return True

    def flush(self) -> int:
        """Deliver buffered lines. Returns the number of lines handed off (0 if empty)."""
        if not self._lines:
            return 0
        batch = "".join(self._lines).encode("utf-8")
        attempts = 1 + max(0, self._cfg.retry_attempts)

        for attempt in range(attempts):
            disposition = self._sink.deliver(batch)
            if isinstance(disposition, Retryable):
                if attempt + 1 < attempts:
                    delay = calculate_retry_delay(
                        attempt, self._cfg.retry_delay_ms, self._cfg.max_retry_delay_ms
                    )
                    logger.info(f"Retrying flush in {delay:.2f}s (attempt {attempt + 2}/{attempts})")
                    self._sleep(delay)
                    continue
                raise RetryableFailure(disposition.reason, disposition.status_code)
            if isinstance(disposition, Permanent):
                raise PermanentFailure(disposition.reason, disposition.status_code)
            break

        n = len(self._lines)
        if isinstance(disposition, Silent):
            self.dropped_rows += n
        else:
            self.delivered_rows += n
        self._reset()
        return n

    def close(self) -> int:
        """Flush remaining lines; safe to call multiple times."""
        return self.flush()

    # --------------------------- internals

    def _reset(self) -> None:
        self._lines.clear()
        self._bytes = 0
        self._t0 = monotonic()

    def _maybe_flush(self) -> None:
        if len(self._lines) >= self._cfg.max_rows:
            self.flush()
            return
        if self._bytes >= self._cfg.max_bytes:
            self.flush()
            return
        elapsed_ms = (monotonic() - self._t0) * 1000.0
        if elapsed_ms >= self._cfg.max_ms:
            self.flush()
