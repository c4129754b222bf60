"""
Prometheus metrics for the sink.
Registered in the global REGISTRY on import; expose them with
prometheus_client.start_http_server in the owning process.
"""

from prometheus_client import Counter, Histogram

DELIVERIES_TOTAL = Counter(
    "chsink_deliveries_total",
    "Batch delivery attempts by outcome",
    ["table", "disposition"],
)

DELIVERY_LATENCY = Histogram(
    "chsink_delivery_latency_seconds",
    "Round-trip time of one batch POST",
    ["table"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

DELIVERED_BYTES = Counter(
    "chsink_delivered_bytes_total",
    "Payload bytes accepted by ClickHouse",
    ["table"],
)

SILENT_DROPS_TOTAL = Counter(
    "chsink_silent_drops_total",
    "Batches dropped after a non-retryable error response (error_response_as_unrecoverable off)",
    ["table"],
)

SERIALIZATION_FAILURES_TOTAL = Counter(
    "chsink_serialization_failures_total",
    "Records dropped because they could not be serialized",
)

