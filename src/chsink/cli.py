from __future__ import annotations

import asyncio
import json
import sys
from contextlib import closing
from typing import Iterator, List, Optional, Tuple

import typer
from loguru import logger

from .abatch import AsyncBatchProcessor
from .batch import BatchConfig, BatchProcessor
from .config import SinkSettings, load_settings
from .errors import ConfigError, DeliveryError, PermanentFailure, SerializationError
from .formatter import RecordFormatter
from .sink import AsyncClickHouseSink, ClickHouseSink
from .utils import event_time, iter_ndjson

app = typer.Typer(help="ClickHouse sink operational CLI (settings also read from CHSINK_* env vars)")

EXIT_CONFIG = 2
EXIT_RETRYABLE = 75  # EX_TEMPFAIL
EXIT_PERMANENT = 1


@app.callback()
def main(log_level: str = typer.Option("INFO", "--log-level", help="loguru level for stderr")):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


# ---------------------------
# Common options
# ---------------------------


def host_opt() -> Optional[str]:
    return typer.Option(None, "--host", help="ClickHouse host (CHSINK_HOST)")


def port_opt() -> Optional[int]:
    return typer.Option(None, "--port", help="HTTP interface port (default 8123)")


def database_opt() -> Optional[str]:
    return typer.Option(None, "--database", help="Database (default 'default')")


def table_opt() -> Optional[str]:
    return typer.Option(None, "--table", help="Target table (CHSINK_TABLE)")


def user_opt() -> Optional[str]:
    return typer.Option(None, "--user", help="User (default 'default'); prefer CHSINK_PASSWORD for the password")


def tz_offset_opt() -> Optional[int]:
    return typer.Option(None, "--tz-offset", help="Minutes added to the injected timestamp")


def datetime_name_opt() -> Optional[str]:
    return typer.Option(None, "--datetime-name", help="Field to inject the event time into")


def time_key_opt() -> Optional[str]:
    return typer.Option(
        None, "--time-key", help="Record field holding the event time (epoch or ISO); default now"
    )


def _settings(**overrides) -> SinkSettings:
    try:
        return load_settings(**overrides)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(EXIT_CONFIG)


class _InputRecords:
    """NDJSON input for the CLI; unreadable lines and bad event times are logged and counted."""

    def __init__(self, path: str, time_key: Optional[str]):
        self.path = path
        self.time_key = time_key
        self.rejected = 0

    def _reject(self, lineno: int, reason) -> None:
        self.rejected += 1
        logger.error(f"Skipping input line {self.path}:{lineno}: {reason}")

    def _on_unreadable(self, lineno: int, e: ValueError) -> None:
        self.rejected += 1
        logger.error(f"Skipping input line: {e}")

    def rows(self) -> Iterator[Tuple[int, dict]]:
        """Yield (event_time, record) pairs."""
        with closing(iter_ndjson(self.path, on_error=self._on_unreadable)) as records:
            for lineno, rec in records:
                try:
                    ts = event_time(rec, self.time_key)
                except (ValueError, OverflowError) as e:
                    self._reject(lineno, f"bad event time ({e})")
                    continue
                yield ts, rec


# ---------------------------
# Health
# ---------------------------


@app.command("ping")
def ping(
    host: Optional[str] = host_opt(),
    port: Optional[int] = port_opt(),
    database: Optional[str] = database_opt(),
    table: Optional[str] = table_opt(),
    user: Optional[str] = user_opt(),
):
    """Run the SHOW TABLES connectivity self-test."""
    settings = _settings(host=host, port=port, database=database, table=table, user=user)
    try:
        ClickHouseSink(settings)
    except ConfigError as e:
        typer.echo(json.dumps({"ok": False, "error": str(e)}, indent=2))
        raise typer.Exit(EXIT_CONFIG)
    typer.echo(json.dumps({"ok": True}, indent=2))


# ---------------------------
# Dry run
# ---------------------------


@app.command("format")
def format_cmd(
    path: str = typer.Argument(..., help="NDJSON file of records, '-' for stdin"),
    tz_offset: int = typer.Option(0, "--tz-offset", help="Minutes added to the injected timestamp"),
    datetime_name: Optional[str] = datetime_name_opt(),
    time_key: Optional[str] = time_key_opt(),
):
    """Print the JSONEachRow lines that would be sent, without contacting ClickHouse."""
    fmt = RecordFormatter(tz_offset, datetime_name)
    source = _InputRecords(path, time_key)
    rejected = 0
    with closing(source.rows()) as rows:
        for ts, rec in rows:
            try:
                typer.echo(fmt.format(ts, rec), nl=False)
            except SerializationError as e:
                rejected += 1
                logger.error(str(e))
    if rejected or source.rejected:
        raise typer.Exit(EXIT_PERMANENT)


# ---------------------------
# Delivery
# ---------------------------


@app.command("ship")
def ship(
    path: str = typer.Argument(..., help="NDJSON file of records, '-' for stdin"),
    host: Optional[str] = host_opt(),
    port: Optional[int] = port_opt(),
    database: Optional[str] = database_opt(),
    table: Optional[str] = table_opt(),
    user: Optional[str] = user_opt(),
    tz_offset: Optional[int] = tz_offset_opt(),
    datetime_name: Optional[str] = datetime_name_opt(),
    time_key: Optional[str] = time_key_opt(),
    tag: str = typer.Option("chsink.cli", "--tag"),
    unrecoverable: Optional[bool] = typer.Option(
        None,
        "--error-response-as-unrecoverable/--drop-error-responses",
        help="Escalate non-retryable error responses instead of dropping the batch",
    ),
    retryable_codes: Optional[List[int]] = typer.Option(
        None, "--retryable-code", help="Retryable HTTP status (repeatable; default 503)"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Request timeout in seconds"),
    max_rows: int = typer.Option(1000, "--max-rows", help="Flush when pending rows reach this size"),
    max_ms: int = typer.Option(5000, "--max-ms", help="Flush when this many ms elapse since last flush"),
    max_bytes: int = typer.Option(1_048_576, "--max-bytes", help="Flush when pending bytes reach this size"),
    retry_attempts: int = typer.Option(
        3, "--retry-attempts", help="Re-deliveries per flush before giving up"
    ),
    check: bool = typer.Option(True, "--check/--no-check", help="Run the self-test first"),
    use_async: bool = typer.Option(False, "--async", help="Use the asyncio client"),
):
    """Format records from PATH and deliver them in batches."""
    settings = _settings(
        host=host,
        port=port,
        database=database,
        table=table,
        user=user,
        tz_offset=tz_offset,
        datetime_name=datetime_name,
        error_response_as_unrecoverable=unrecoverable,
        retryable_response_codes=set(retryable_codes) if retryable_codes else None,
        request_timeout=timeout,
    )
    cfg = BatchConfig(
        max_rows=max_rows, max_ms=max_ms, max_bytes=max_bytes, retry_attempts=retry_attempts
    )

    try:
        if use_async:
            summary = asyncio.run(_ship_async(settings, cfg, path, tag, time_key, check))
        else:
            summary = _ship(settings, cfg, path, tag, time_key, check)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(EXIT_CONFIG)
    except DeliveryError as e:
        logger.error(f"Delivery aborted: {e}")
        raise typer.Exit(EXIT_PERMANENT if isinstance(e, PermanentFailure) else EXIT_RETRYABLE)

    typer.echo(json.dumps(summary, indent=2))


def _ship(
    settings: SinkSettings, cfg: BatchConfig, path: str, tag: str, time_key: Optional[str], check: bool
) -> dict:
    sink = ClickHouseSink(settings, check_connection=check)
    bp = BatchProcessor(sink, cfg)
    source = _InputRecords(path, time_key)
    n = 0
    with closing(source.rows()) as rows:
        for ts, rec in rows:
            bp.add(tag, ts, rec)
            n += 1
    bp.close()
    return {
        "read": n + source.rejected,
        "delivered": bp.delivered_rows,
        "dropped": bp.dropped_rows,
        "rejected": bp.rejected_records + source.rejected,
    }


async def _ship_async(
    settings: SinkSettings, cfg: BatchConfig, path: str, tag: str, time_key: Optional[str], check: bool
) -> dict:
    source = _InputRecords(path, time_key)
    n = 0
    async with AsyncClickHouseSink(settings, check_connection=check) as sink:
        async with AsyncBatchProcessor(sink, cfg) as bp:
            with closing(source.rows()) as rows:
                for ts, rec in rows:
                    await bp.add(tag, ts, rec)
                    n += 1
    return {
        "read": n + source.rejected,
        "delivered": bp.delivered_rows,
        "dropped": bp.dropped_rows,
        "rejected": bp.rejected_records + source.rejected,
    }


if __name__ == "__main__":
    app()
