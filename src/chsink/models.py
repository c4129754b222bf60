"""
Value types shared by the formatter, the delivery engine and schedulers.

Endpoint is immutable and safe to share between concurrent deliveries.
Dispositions are returned by value from every delivery attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union
from urllib.parse import urlencode

INSERT_TEMPLATE = "INSERT INTO {table} FORMAT JSONEachRow"
SHOW_TABLES = "SHOW TABLES"


@dataclass(frozen=True)
class Endpoint:
    """ClickHouse HTTP interface location plus the fixed query parameters."""

    host: str
    port: int = 8123
    database: str = "default"
    user: str = "default"
    password: str = field(default="", repr=False)
    scheme: str = "http"
    path: str = "/"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{self.path}"

    @property
    def params(self) -> dict[str, str | int]:
        return {
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "input_format_skip_unknown_fields": 1,
        }

    def query_url(self, statement: str) -> str:
        """Full URL with the fixed parameters and ``query=<statement>`` appended."""
        return f"{self.base_url}?{urlencode({**self.params, 'query': statement})}"

    def insert_url(self, table: str) -> str:
        # table is passed through verbatim; callers own its trustworthiness
        return self.query_url(INSERT_TEMPLATE.format(table=table))

    def redacted(self, statement: str | None = None) -> str:
        """URL safe for log lines (password masked)."""
        params = {**self.params, "password": "***" if self.password else ""}
        if statement is not None:
            params["query"] = statement
        return f"{self.base_url}?{urlencode(params)}"


# --- Dispositions ---


@dataclass(frozen=True)
class Success:
    status_code: int | None = None
    kind = "success"


@dataclass(frozen=True)
class Retryable:
    reason: str
    status_code: int | None = None
    kind = "retryable"


@dataclass(frozen=True)
class Permanent:
    reason: str
    status_code: int | None = None
    kind = "permanent"


@dataclass(frozen=True)
class Silent:
    """Non-2xx response that is neither retried nor escalated: the batch is lost."""

    reason: str
    status_code: int | None = None
    kind = "silent"


Disposition = Union[Success, Retryable, Permanent, Silent]
