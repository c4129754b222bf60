"""
Unit tests for the scheduler-facing sink surface.
"""

import json

import httpx
import pytest

from chsink.errors import ConfigError, PermanentFailure, RetryableFailure
from chsink.models import Permanent, Silent, Success
from chsink.sink import AsyncClickHouseSink, ClickHouseSink


def test_construction_runs_self_test(make_settings, fake_clickhouse):
    fake = fake_clickhouse((200, "events\n"))
    ClickHouseSink(make_settings(), transport=fake.transport)

    assert len(fake.requests) == 1
    assert fake.last.url.params["query"] == "SHOW TABLES"


def test_construction_fails_on_refused(make_settings, fake_clickhouse):
    fake = fake_clickhouse(httpx.ConnectError)
    with pytest.raises(ConfigError):
        ClickHouseSink(make_settings(), transport=fake.transport)


def test_self_test_can_be_skipped(make_settings, fake_clickhouse):
    fake = fake_clickhouse((500, "down"))
    ClickHouseSink(make_settings(), transport=fake.transport, check_connection=False)
    assert fake.requests == []


def test_format_uses_settings(make_settings, fake_clickhouse):
    sink = ClickHouseSink(
        make_settings(tz_offset=-60, datetime_name="dt"),
        transport=fake_clickhouse().transport,
        check_connection=False,
    )
    line = sink.format("app.web", 7200, {"path": "/"})
    assert json.loads(line) == {"path": "/", "dt": 3600}


def test_format_without_datetime_name_adds_nothing(make_settings, fake_clickhouse):
    sink = ClickHouseSink(make_settings(), transport=fake_clickhouse().transport, check_connection=False)
    assert json.loads(sink.format(None, 1, {"a": 1})) == {"a": 1}


def test_write_success_and_silent_return(make_settings, fake_clickhouse):
    fake = fake_clickhouse((200, ""), (400, "bad table"))
    sink = ClickHouseSink(make_settings(), transport=fake.transport, check_connection=False)

    assert sink.write(b'{"a":1}\n') is None
    assert sink.write(b'{"a":1}\n') is None
    assert len(fake.requests) == 2


def test_write_raises_retryable(make_settings, fake_clickhouse):
    fake = fake_clickhouse((503, "overloaded"))
    sink = ClickHouseSink(make_settings(), transport=fake.transport, check_connection=False)

    with pytest.raises(RetryableFailure, match="remote responded: overloaded") as ei:
        sink.write(b'{"a":1}\n')
    assert ei.value.status_code == 503


def test_write_raises_permanent(make_settings, fake_clickhouse):
    fake = fake_clickhouse((400, "bad table"))
    sink = ClickHouseSink(
        make_settings(error_response_as_unrecoverable=True),
        transport=fake.transport,
        check_connection=False,
    )
    with pytest.raises(PermanentFailure, match="bad table"):
        sink.write(b'{"a":1}\n')


def test_custom_retryable_codes_from_settings(make_settings, fake_clickhouse):
    fake = fake_clickhouse((429, "slow down"))
    sink = ClickHouseSink(
        make_settings(retryable_response_codes={429}, error_response_as_unrecoverable=True),
        transport=fake.transport,
        check_connection=False,
    )
    with pytest.raises(RetryableFailure):
        sink.write(b"{}\n")


def test_deliver_targets_configured_table(make_settings, fake_clickhouse):
    fake = fake_clickhouse((200, ""))
    sink = ClickHouseSink(make_settings(table="access_log"), transport=fake.transport, check_connection=False)

    assert isinstance(sink.deliver(b"{}\n"), Success)
    assert fake.last.url.params["query"] == "INSERT INTO access_log FORMAT JSONEachRow"


def test_multi_workers_ready():
    assert ClickHouseSink.multi_workers_ready is True
    assert AsyncClickHouseSink.multi_workers_ready is True


@pytest.mark.asyncio
async def test_async_sink_lifecycle(make_settings, fake_clickhouse):
    fake = fake_clickhouse((200, ""), (400, "nope"))
    async with AsyncClickHouseSink(
        make_settings(error_response_as_unrecoverable=True), transport=fake.transport
    ) as sink:
        assert fake.last.method == "GET"
        assert isinstance(await sink.deliver(b"{}\n"), Permanent)
        with pytest.raises(PermanentFailure):
            await sink.write(b"{}\n")


@pytest.mark.asyncio
async def test_async_sink_silent_write(make_settings, fake_clickhouse):
    fake = fake_clickhouse((500, "boom"))
    sink = AsyncClickHouseSink(make_settings(), transport=fake.transport, check_connection=False)
    await sink.start()
    assert fake.requests == []
    assert isinstance(await sink.deliver(b"{}\n"), Silent)
    assert await sink.write(b"{}\n") is None


@pytest.mark.parametrize("sink_cls", [ClickHouseSink, AsyncClickHouseSink])
def test_drop_default_warns_on_construction(sink_cls, make_settings, fake_clickhouse):
    from loguru import logger

    warnings = []
    handler_id = logger.add(lambda m: warnings.append(str(m)), level="WARNING")
    try:
        sink_cls(make_settings(), transport=fake_clickhouse().transport, check_connection=False)
        sink_cls(
            make_settings(error_response_as_unrecoverable=True),
            transport=fake_clickhouse().transport,
            check_connection=False,
        )
    finally:
        logger.remove(handler_id)

    assert len([m for m in warnings if "error_response_as_unrecoverable is off" in m]) == 1
