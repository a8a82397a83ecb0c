"""
Fetcher configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded database hosts or credentials.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-101)
- 2026-10-09: Add FETCH_LOG_DIR for per-session fetch logs (STORY-106)

TODO:
- None
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class FetcherSettings(BaseSettings):
    """Fetcher service configuration.

    Attributes:
        database_url: SQLAlchemy async connection string (asyncpg).
        fetch_timezone: IANA zone that reading timestamps are localized to.
        device_timeout_s: Per-request timeout for meter HTTP calls.
        fetch_log_dir: Directory for per-session fetch log files. Empty
            disables file output; records still reach the root handler.
        api_host: Bind address of the control API.
        api_port: Bind port of the control API.
        log_level: Root logging level name.
    """

    database_url: str
    fetch_timezone: str = "Europe/Berlin"
    device_timeout_s: float = 10.0
    fetch_log_dir: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    log_level: str = "INFO"

    @field_validator("fetch_timezone")
    @classmethod
    def fetch_timezone_must_exist(cls, v: str) -> str:
        """Validate that the zone is known to the tz database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"FETCH_TIMEZONE is not a known zone: {v!r}") from exc
        return v

    @field_validator("device_timeout_s")
    @classmethod
    def device_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("DEVICE_TIMEOUT_S must be > 0")
        return v

    @field_validator("api_port")
    @classmethod
    def api_port_must_be_valid(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("API_PORT must be >= 1 and <= 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalize the level name and reject unknown ones."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"LOG_LEVEL is not a logging level: {v!r}")
        return level

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def get_settings() -> FetcherSettings:
    """Create and return a FetcherSettings instance.

    Returns:
        FetcherSettings: Validated configuration from environment variables.
    """
    return FetcherSettings()
