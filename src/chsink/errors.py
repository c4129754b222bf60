"""
Custom exceptions for the ClickHouse sink.

Batch-level failures carry the classification made at the delivery boundary;
schedulers only ever see these, never raw HTTP status codes.
"""

import httpx


class ChSinkError(Exception):
    """Base error for the ClickHouse sink."""

    pass


class SerializationError(ChSinkError):
    """A record field has no JSON representation. Not retryable."""

    pass


class ConfigError(ChSinkError):
    """Invalid settings or a failed connectivity self-test."""

    pass


class DeliveryError(ChSinkError):
    """Base for batch-level delivery failures."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class RetryableFailure(DeliveryError):
    """Transient remote or network failure; keep the batch and retry later."""

    pass


class PermanentFailure(DeliveryError):
    """Remote rejected the batch for good; escalate to an operator."""

    pass


def map_transport_error(e: Exception) -> RetryableFailure:
    if isinstance(e, httpx.TimeoutException):
        return RetryableFailure(f"transport error: request timed out ({type(e).__name__})")
    if isinstance(e, httpx.ConnectError):
        return RetryableFailure(f"transport error: could not connect ({e})")
    if isinstance(e, httpx.DecodingError):
        return RetryableFailure(f"transport error: undecodable response body ({e})")
    return RetryableFailure(f"transport error: {type(e).__name__}: {e}")
