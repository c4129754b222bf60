from __future__ import annotations

from time import monotonic
from typing import AbstractSet, Optional

import httpx
from loguru import logger

from .client import DEFAULT_RETRYABLE_CODES, _as_bytes, classify_response, record_disposition
from .errors import ConfigError, map_transport_error
from .models import SHOW_TABLES, Disposition, Endpoint, Retryable


class AsyncClickHouseHTTP:
    """asyncio flavour of ClickHouseHTTP; same URLs, same classification."""

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        retryable_codes: AbstractSet[int] = DEFAULT_RETRYABLE_CODES,
        error_response_as_unrecoverable: bool = False,
        timeout: Optional[float] = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.retryable_codes = frozenset(retryable_codes)
        self.error_response_as_unrecoverable = error_response_as_unrecoverable
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def deliver(self, table: str, batch) -> Disposition:
        body = _as_bytes(batch)
        t0 = monotonic()
        try:
            async with self._client() as client:
                res = await client.post(self.endpoint.insert_url(table), content=body)
            disposition = classify_response(
                res.status_code,
                res.text,
                retryable_codes=self.retryable_codes,
                error_response_as_unrecoverable=self.error_response_as_unrecoverable,
            )
        except httpx.RequestError as e:
            disposition = Retryable(map_transport_error(e).reason)
        record_disposition(table, disposition, len(body), monotonic() - t0)
        return disposition

    async def test_connection(self) -> None:
        try:
            async with self._client() as client:
                res = await client.get(self.endpoint.query_url(SHOW_TABLES))
        except httpx.TransportError as e:
            raise ConfigError(
                f"Couldn't connect to ClickHouse at {self.endpoint.base_url} - connection refused"
            ) from e
        except httpx.RequestError as e:
            raise ConfigError(
                f"ClickHouse at {self.endpoint.base_url} sent an unreadable response: {e}"
            ) from e

        if res.status_code != 200:
            raise ConfigError(f"ClickHouse server responded non-200 code: {res.text}")
        logger.info(f"ClickHouse reachable at {self.endpoint.redacted(SHOW_TABLES)}")
