"""
Unit tests for SinkSettings / load_settings.
"""

import pytest

from chsink.config import SinkSettings, load_settings
from chsink.errors import ConfigError


def test_defaults():
    s = load_settings(host="ch", table="events")

    assert s.port == 8123
    assert s.database == "default"
    assert s.user == "default"
    assert s.password == ""
    assert s.tz_offset == 0
    assert s.datetime_name is None
    assert s.error_response_as_unrecoverable is False
    assert s.retryable_response_codes == {503}
    assert s.request_timeout == 30.0


def test_endpoint_from_settings():
    ep = load_settings(host="ch", table="t", port=9000, database="logs", user="u", password="p").endpoint
    assert (ep.host, ep.port, ep.database, ep.user, ep.password) == ("ch", 9000, "logs", "u", "p")


def test_env_vars(monkeypatch):
    monkeypatch.setenv("CHSINK_HOST", "env-host")
    monkeypatch.setenv("CHSINK_TABLE", "env_table")
    monkeypatch.setenv("CHSINK_RETRYABLE_RESPONSE_CODES", "[502, 503, 504]")
    monkeypatch.setenv("CHSINK_ERROR_RESPONSE_AS_UNRECOVERABLE", "true")

    s = load_settings()
    assert s.host == "env-host"
    assert s.table == "env_table"
    assert s.retryable_response_codes == {502, 503, 504}
    assert s.error_response_as_unrecoverable is True


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("CHSINK_HOST=dotenv-host\nCHSINK_TABLE=t\nCHSINK_TZ_OFFSET=120\n")
    s = SinkSettings()
    assert s.host == "dotenv-host"
    assert s.tz_offset == 120


def test_overrides_beat_env_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("CHSINK_HOST", "env-host")
    s = load_settings(host="cli-host", table="t", port=None)
    assert s.host == "cli-host"
    assert s.port == 8123


def test_blank_datetime_name_disables_injection():
    assert load_settings(host="h", table="t", datetime_name="").datetime_name is None


def test_timeout_can_be_disabled():
    assert SinkSettings(host="h", table="t", request_timeout=None).request_timeout is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"table": "t"},
        {"host": "h"},
        {"host": "  ", "table": "t"},
        {"host": "h", "table": ""},
        {"host": "h", "table": "t", "port": 0},
        {"host": "h", "table": "t", "port": 70000},
        {"host": "h", "table": "t", "retryable_response_codes": {42}},
        {"host": "h", "table": "t", "request_timeout": 0},
    ],
)
def test_invalid_settings_raise_config_error(overrides):
    with pytest.raises(ConfigError):
        load_settings(**overrides)


def test_get_settings_is_cached(monkeypatch):
    from chsink.config import get_settings

    get_settings.cache_clear()
    monkeypatch.setenv("CHSINK_HOST", "cached-host")
    monkeypatch.setenv("CHSINK_TABLE", "t")
    try:
        first = get_settings()
        monkeypatch.setenv("CHSINK_HOST", "other-host")
        assert get_settings() is first
        assert first.host == "cached-host"
    finally:
        get_settings.cache_clear()
