"""
Pytest configuration and fixtures for clickhouse-sink.

Provides a scripted fake ClickHouse HTTP interface built on httpx.MockTransport
and settings that never leak in from the developer's environment.
"""

import os

import httpx
import pytest

from chsink.config import SinkSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Drop CHSINK_* env vars and run from an empty dir so no .env is picked up."""
    for key in list(os.environ):
        if key.upper().startswith("CHSINK_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_settings():
    def _make(**overrides) -> SinkSettings:
        base = {"host": "localhost", "table": "events"}
        base.update(overrides)
        return SinkSettings(**base)

    return _make


class FakeClickHouse:
    """
    Scripted responses for a MockTransport.

    Each scripted entry is either ``(status, body)`` or an exception class from
    httpx to raise; the last entry repeats once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script) or [(200, "")]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, type) and issubclass(step, httpx.TransportError):
            raise step("scripted failure", request=request)
        status, body = step
        return httpx.Response(status, text=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def fake_clickhouse():
    """Factory: fake_clickhouse((200, "Ok."), (503, "busy"), httpx.ConnectError, ...)."""
    return FakeClickHouse
