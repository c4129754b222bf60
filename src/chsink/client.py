from __future__ import annotations

from time import monotonic
from typing import AbstractSet, Optional

import httpx
from loguru import logger

from .errors import ConfigError, map_transport_error
from .metrics import DELIVERED_BYTES, DELIVERIES_TOTAL, DELIVERY_LATENCY, SILENT_DROPS_TOTAL
from .models import SHOW_TABLES, Disposition, Endpoint, Permanent, Retryable, Silent, Success

DEFAULT_RETRYABLE_CODES: frozenset[int] = frozenset({503})


def classify_response(
    status_code: int,
    body: str,
    *,
    retryable_codes: AbstractSet[int] = DEFAULT_RETRYABLE_CODES,
    error_response_as_unrecoverable: bool = False,
) -> Disposition:
    """Map one HTTP response to a disposition. Retryable codes win over the unrecoverable flag."""
    if 200 <= status_code < 300:
        return Success(status_code)
    msg = f"remote responded: {body}"
    if status_code in retryable_codes:
        return Retryable(msg, status_code)
    if error_response_as_unrecoverable:
        return Permanent(msg, status_code)
    return Silent(msg, status_code)


def _as_bytes(batch) -> bytes:
    if hasattr(batch, "read"):
        batch = batch.read()
    if isinstance(batch, str):
        return batch.encode("utf-8")
    return bytes(batch)


def record_disposition(table: str, disposition: Disposition, nbytes: int, elapsed: float) -> None:
    """Log and count one delivery outcome."""
    DELIVERIES_TOTAL.labels(table=table, disposition=disposition.kind).inc()
    if disposition.status_code is not None:
        DELIVERY_LATENCY.labels(table=table).observe(elapsed)

    if isinstance(disposition, Success):
        DELIVERED_BYTES.labels(table=table).inc(nbytes)
        logger.debug(f"Delivered {nbytes} bytes to {table} in {elapsed * 1000:.1f}ms")
    elif isinstance(disposition, Retryable):
        logger.warning(f"Retryable delivery failure for {table}: {disposition.reason}")
    elif isinstance(disposition, Permanent):
        logger.error(f"Unrecoverable delivery failure for {table}: {disposition.reason}")
    else:
        SILENT_DROPS_TOTAL.labels(table=table).inc()
        logger.error(
            f"Batch for {table} dropped ({nbytes} bytes, status {disposition.status_code}): "
            f"{disposition.reason}. Set error_response_as_unrecoverable to escalate instead."
        )


class ClickHouseHTTP:
    """
    Blocking delivery engine for the ClickHouse HTTP interface.

    Stateless apart from read-only settings: every call opens its own client,
    so one instance can be shared by any number of worker threads.

    Usage:
        ch = ClickHouseHTTP(Endpoint(host="localhost"))
        d = ch.deliver("events", b'{"a":1}\\n')
        if isinstance(d, Retryable):
            ...
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        retryable_codes: AbstractSet[int] = DEFAULT_RETRYABLE_CODES,
        error_response_as_unrecoverable: bool = False,
        timeout: Optional[float] = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.retryable_codes = frozenset(retryable_codes)
        self.error_response_as_unrecoverable = error_response_as_unrecoverable
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(transport=self._transport, timeout=self.timeout)

    # ---------- delivery ----------

    def deliver(self, table: str, batch) -> Disposition:
        body = _as_bytes(batch)
        t0 = monotonic()
        try:
            with self._client() as client:
                res = client.post(self.endpoint.insert_url(table), content=body)
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

    # ---------- admin / health ----------

    def test_connection(self) -> None:
        """SHOW TABLES against the endpoint; raises ConfigError unless it answers 200."""
        try:
            with self._client() as client:
                res = client.get(self.endpoint.query_url(SHOW_TABLES))
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
