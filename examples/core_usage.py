"""
Example usage of the ClickHouse sink.

Shows the two ways a scheduler can drive the sink: matching on dispositions
returned by ``deliver`` or letting ``BatchProcessor`` handle retries.

Requires a ClickHouse server on localhost:8123 with a table such as:

    CREATE TABLE events (ts UInt32, level String, msg String) ENGINE = MergeTree ORDER BY ts
"""

import asyncio
import time

from chsink import (
    AsyncBatchProcessor,
    AsyncClickHouseSink,
    BatchConfig,
    BatchProcessor,
    ClickHouseSink,
    Permanent,
    Retryable,
    Silent,
    load_settings,
)


def disposition_example():
    print("=== Dispositions ===")
    settings = load_settings(host="127.0.0.1", table="events", datetime_name="ts")
    sink = ClickHouseSink(settings)

    now = int(time.time())
    batch = "".join(
        sink.format("app", now + i, {"level": "info", "msg": f"event {i}"}) for i in range(3)
    )

    d = sink.deliver(batch.encode())
    if isinstance(d, Retryable):
        print(f"Try again later: {d.reason}")
    elif isinstance(d, Permanent):
        print(f"Needs an operator: {d.reason}")
    elif isinstance(d, Silent):
        print(f"Dropped: {d.reason}")
    else:
        print("Delivered")


def batch_example():
    print("=== BatchProcessor ===")
    settings = load_settings(host="127.0.0.1", table="events", datetime_name="ts")
    bp = BatchProcessor(ClickHouseSink(settings), BatchConfig(max_rows=500, retry_attempts=5))
    for i in range(1200):
        bp.add("app", int(time.time()), {"level": "debug", "msg": f"tick {i}"})
    bp.close()
    print(f"delivered={bp.delivered_rows} dropped={bp.dropped_rows}")


async def async_example():
    print("=== AsyncBatchProcessor ===")
    settings = load_settings(
        host="127.0.0.1", table="events", datetime_name="ts", error_response_as_unrecoverable=True
    )
    async with AsyncClickHouseSink(settings) as sink:
        async with AsyncBatchProcessor(sink, BatchConfig(max_rows=100)) as bp:
            for i in range(250):
                await bp.add("app", int(time.time()), {"level": "info", "msg": f"async {i}"})
    print(f"delivered={bp.delivered_rows}")


if __name__ == "__main__":
    disposition_example()
    batch_example()
    asyncio.run(async_example())
