"""
Shared test fixtures for fetcher tests.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-101)
- 2026-10-09: Reset fetch-session logger between tests (STORY-106)

TODO:
- None
"""

import pytest
from fakes import RecordingSink

from fetcher.src import logging_config

# All FetcherSettings environment variable names, used for cleanup.
_ALL_FETCHER_ENV_VARS = (
    "DATABASE_URL",
    "FETCH_TIMEZONE",
    "DEVICE_TIMEOUT_S",
    "FETCH_LOG_DIR",
    "API_HOST",
    "API_PORT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_fetcher_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all fetcher env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_FETCHER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_fetch_logger():
    """Detach any session file handler a test left behind."""
    logging_config.reset()
    yield
    logging_config.reset()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every FetcherSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "DATABASE_URL": "postgresql+asyncpg://u:p@db.example.com/meters",
        "FETCH_TIMEZONE": "Europe/Vienna",
        "DEVICE_TIMEOUT_S": "4.5",
        "FETCH_LOG_DIR": "/var/log/fetcher",
        "API_HOST": "127.0.0.1",
        "API_PORT": "8080",
        "LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
