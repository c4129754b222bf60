from __future__ import annotations

import asyncio
from time import monotonic
from typing import Any, List, MutableMapping, Optional

from loguru import logger

from .batch import BatchConfig  # reuse the same config dataclass
from .errors import PermanentFailure, RetryableFailure, SerializationError
from .metrics import SERIALIZATION_FAILURES_TOTAL
from .models import Permanent, Retryable, Silent
from .sink import AsyncClickHouseSink
from .utils import calculate_retry_delay


class AsyncBatchProcessor:
    """
    Tiny async scheduler in front of an AsyncClickHouseSink.

    Usage:

        async with AsyncClickHouseSink(settings) as sink:
            async with AsyncBatchProcessor(sink, BatchConfig(max_rows=2000)) as bp:
                for ts, rec in events:
                    await bp.add("app.events", ts, rec)   # thresholds auto-flush
            # auto-flush on context exit
    """

    def __init__(self, sink: AsyncClickHouseSink, config: Optional[BatchConfig] = None):
        self._sink = sink
        self._cfg = config or BatchConfig()
        self._t0 = monotonic()

        self._lines: List[str] = []
        self._bytes = 0

        self.delivered_rows = 0
        self.dropped_rows = 0
        self.rejected_records = 0

        self._lock = asyncio.Lock()

    @property
    def pending_rows(self) -> int:
        return len(self._lines)

    # --------------- context management

    async def __aenter__(self) -> "AsyncBatchProcessor":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        # flush at shutdown, but don't mask an in-flight exception
        if exc_type is None:
            await self.flush()

    # --------------- public API

    async def add(
        self, tag: Optional[str], timestamp: int | float, record: MutableMapping[str, Any]
    ) -> bool:
        try:
            line = self._sink.format(tag, timestamp, record)
        except SerializationError as e:
            self.rejected_records += 1
            SERIALIZATION_FAILURES_TOTAL.inc()
            logger.error(f"Dropping record (tag={tag}): {e}")
            return False
        async with self._lock:
            self._lines.append(line)
            self._bytes += len(line.encode("utf-8"))
        await self._maybe_flush()
        return True

    async def flush(self) -> int:
        async with self._lock:
            if not self._lines:
                return 0
            batch = "".join(self._lines).encode("utf-8")
            attempts = 1 + max(0, self._cfg.retry_attempts)

            for attempt in range(attempts):
                disposition = await self._sink.deliver(batch)
                if isinstance(disposition, Retryable):
                    if attempt + 1 < attempts:
                        delay = calculate_retry_delay(
                            attempt, self._cfg.retry_delay_ms, self._cfg.max_retry_delay_ms
                        )
                        logger.info(
                            f"Retrying flush in {delay:.2f}s (attempt {attempt + 2}/{attempts})"
                        )
                        await asyncio.sleep(delay)
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
            self._lines.clear()
            self._bytes = 0
            self._t0 = monotonic()
            return n

    # --------------- internals

    async def _maybe_flush(self) -> None:
        if len(self._lines) >= self._cfg.max_rows:
            await self.flush()
            return
        if self._bytes >= self._cfg.max_bytes:
            await self.flush()
            return
        elapsed_ms = (monotonic() - self._t0) * 1000.0
        if elapsed_ms >= self._cfg.max_ms:
            await self.flush()
