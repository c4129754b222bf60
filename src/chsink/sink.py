"""
Scheduler-facing sink surface.

A buffering scheduler calls ``format(tag, timestamp, record)`` once per record
and ``write(chunk)`` once per flushed chunk. ``write`` returns on success and
on silently dropped batches, and raises RetryableFailure or PermanentFailure
otherwise. Callers that prefer values can use ``deliver`` and match on the
returned disposition instead.
"""

from __future__ import annotations

from typing import Any, MutableMapping, Optional

import httpx
from loguru import logger

from .aclient import AsyncClickHouseHTTP
from .client import ClickHouseHTTP
from .config import SinkSettings
from .errors import PermanentFailure, RetryableFailure
from .formatter import RecordFormatter
from .models import Disposition, Permanent, Retryable


def raise_for_disposition(disposition: Disposition) -> None:
    if isinstance(disposition, Retryable):
        raise RetryableFailure(disposition.reason, disposition.status_code)
    if isinstance(disposition, Permanent):
        raise PermanentFailure(disposition.reason, disposition.status_code)


def _warn_if_dropping(settings: SinkSettings) -> None:
    if not settings.error_response_as_unrecoverable:
        logger.warning(
            "error_response_as_unrecoverable is off: non-retryable error responses "
            "drop the batch after logging it"
        )


class ClickHouseSink:
    """Formatter + blocking delivery engine bound to one table."""

    # no mutable state: any number of workers may share one instance
    multi_workers_ready = True

    def __init__(
        self,
        settings: SinkSettings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        check_connection: bool = True,
    ):
        self.settings = settings
        self.table = settings.table
        self.formatter = RecordFormatter(settings.tz_offset, settings.datetime_name)
        self.client = ClickHouseHTTP(
            settings.endpoint,
            retryable_codes=settings.retryable_response_codes,
            error_response_as_unrecoverable=settings.error_response_as_unrecoverable,
            timeout=settings.request_timeout,
            transport=transport,
        )
        _warn_if_dropping(settings)
        if check_connection:
            self.client.test_connection()

    def format(self, tag: Optional[str], timestamp: int | float, record: MutableMapping[str, Any]) -> str:
        return self.formatter.format(timestamp, record)

    def deliver(self, chunk) -> Disposition:
        return self.client.deliver(self.table, chunk)

    def write(self, chunk) -> None:
        raise_for_disposition(self.deliver(chunk))


class AsyncClickHouseSink:
    """
    asyncio counterpart of ClickHouseSink.

    The connectivity self-test runs on ``start()`` (or ``async with``) since
    it cannot be awaited from ``__init__``.
    """

    multi_workers_ready = True

    def __init__(
        self,
        settings: SinkSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        check_connection: bool = True,
    ):
        self.settings = settings
        self.table = settings.table
        self.formatter = RecordFormatter(settings.tz_offset, settings.datetime_name)
        self.client = AsyncClickHouseHTTP(
            settings.endpoint,
            retryable_codes=settings.retryable_response_codes,
            error_response_as_unrecoverable=settings.error_response_as_unrecoverable,
            timeout=settings.request_timeout,
            transport=transport,
        )
        _warn_if_dropping(settings)
        self._check_connection = check_connection

    async def start(self) -> None:
        if self._check_connection:
            await self.client.test_connection()

    async def __aenter__(self) -> "AsyncClickHouseSink":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def format(self, tag: Optional[str], timestamp: int | float, record: MutableMapping[str, Any]) -> str:
        return self.formatter.format(timestamp, record)

    async def deliver(self, chunk) -> Disposition:
        return await self.client.deliver(self.table, chunk)

    async def write(self, chunk) -> None:
        raise_for_disposition(await self.deliver(chunk))
