from functools import lru_cache
from typing import Optional, Set

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import Endpoint


class SinkSettings(BaseSettings):
    """Sink configuration. Every field can come from a ``CHSINK_*`` env var."""

    host: str
    port: int = 8123
    database: str = "default"
    table: str
    user: str = "default"
    password: str = ""
    # minutes added to the event timestamp before it is written to datetime_name
    tz_offset: int = 0
    datetime_name: Optional[str] = None
    # when False, non-retryable error responses are logged and the batch is dropped
    error_response_as_unrecoverable: bool = False
    retryable_response_codes: Set[int] = {503}
    # seconds; None waits forever
    request_timeout: Optional[float] = 30.0

    model_config = SettingsConfigDict(env_prefix="CHSINK_", env_file=".env", case_sensitive=False)

    @field_validator("host", "table")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Invalid port: {v}")
        return v

    @field_validator("datetime_name")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("retryable_response_codes")
    @classmethod
    def _valid_codes(cls, v: Set[int]) -> Set[int]:
        bad = sorted(c for c in v if not 100 <= c <= 599)
        if bad:
            raise ValueError(f"Invalid HTTP status codes: {bad}")
        return v

    @field_validator("request_timeout")
    @classmethod
    def _positive_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("request_timeout must be > 0 (or unset)")
        return v

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
        )


def load_settings(**overrides) -> SinkSettings:
    """Build settings from env + overrides, turning validation errors into ConfigError."""
    try:
        return SinkSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise ConfigError(f"Invalid sink configuration: {e}") from e


@lru_cache()
def get_settings() -> SinkSettings:
    return load_settings()
