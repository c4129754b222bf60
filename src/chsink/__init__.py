"""
ClickHouse sink

Formats structured records as JSONEachRow lines and delivers batches of them
to ClickHouse over its HTTP interface, classifying every attempt as success,
retryable, permanent or silently dropped.

Usage:
    from chsink import ClickHouseSink, BatchProcessor, load_settings

    sink = ClickHouseSink(load_settings(host="clickhouse", table="events"))
    line = sink.format("app", 1700000000, {"msg": "hello"})
    disposition = sink.deliver(line.encode())
"""

from .abatch import AsyncBatchProcessor
from .aclient import AsyncClickHouseHTTP
from .batch import BatchConfig, BatchProcessor
from .client import ClickHouseHTTP, classify_response
from .config import SinkSettings, get_settings, load_settings
from .errors import (
    ChSinkError,
    ConfigError,
    DeliveryError,
    PermanentFailure,
    RetryableFailure,
    SerializationError,
)
from .formatter import RecordFormatter
from .models import Disposition, Endpoint, Permanent, Retryable, Silent, Success
from .sink import AsyncClickHouseSink, ClickHouseSink

__version__ = "1.0.0"
__all__ = [
    "ClickHouseSink",
    "AsyncClickHouseSink",
    "ClickHouseHTTP",
    "AsyncClickHouseHTTP",
    "classify_response",
    "RecordFormatter",
    "BatchProcessor",
    "AsyncBatchProcessor",
    "BatchConfig",
    "SinkSettings",
    "get_settings",
    "load_settings",
    "Endpoint",
    "Disposition",
    "Success",
    "Retryable",
    "Permanent",
    "Silent",
    "ChSinkError",
    "ConfigError",
    "DeliveryError",
    "RetryableFailure",
    "PermanentFailure",
    "SerializationError",
]
