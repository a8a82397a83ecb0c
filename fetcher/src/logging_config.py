"""
Structured JSON logging configuration and the fetch-session logger.

Provides a custom JSON formatter and a ``setup_logging()`` function
that replaces the default logging configuration with structured output.
Each log record is emitted as a single JSON line containing:
``timestamp``, ``level``, ``logger``, and ``message``.

A fetch session starts whenever collection is (re)started. The session
logger is the one cycle code writes to; when a log directory is
configured, every session gets its own JSON-lines file.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-101)
- 2026-10-09: Per-session fetch log files (STORY-106)

TODO:
- None
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

FETCH_LOGGER_NAME = "fetcher.fetch"

# Module-level session state, replaced on every start_fetch_logger() call.
_current_logger: logging.Logger | None = None
_session_handler: logging.FileHandler | None = None


class JSONFormatter(logging.Formatter):
    """Logging formatter that outputs a single JSON object per line.

    Fields emitted:
    - ``timestamp``: ISO-8601 UTC timestamp.
    - ``level``: Log level name (INFO, WARNING, ERROR, ...).
    - ``logger``: Logger name.
    - ``message``: Formatted log message.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger with structured JSON output.

    Removes any existing handlers on the root logger and installs
    a single ``StreamHandler`` using :class:`JSONFormatter`.

    Args:
        level: Logging level for the root logger.  Defaults to
            ``logging.INFO``.
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicate output.
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)


def start_fetch_logger(log_dir: str | Path | None = None) -> logging.Logger:
    """Begin a new fetch session and designate its logger as current.

    The previous session's file handler (if any) is detached and closed.
    When *log_dir* is given, a file named ``fetch_<local start time>.log``
    is created there and receives every record of this session.

    Args:
        log_dir: Directory for the session log file, or ``None``/empty
            to log through the root handlers only.

    Returns:
        The session logger.
    """
    global _current_logger, _session_handler  # noqa: PLW0603
    session_logger = logging.getLogger(FETCH_LOGGER_NAME)

    if _session_handler is not None:
        session_logger.removeHandler(_session_handler)
        _session_handler.close()
        _session_handler = None

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        filename = f"fetch_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        handler = logging.FileHandler(directory / filename, encoding="utf-8")
        handler.setFormatter(JSONFormatter())
        session_logger.addHandler(handler)
        _session_handler = handler

    _current_logger = session_logger
    return session_logger


def get_current_logger() -> logging.Logger:
    """Return the logger of the running fetch session.

    Falls back to the plain ``fetcher.fetch`` logger when no session has
    been started yet.
    """
    if _current_logger is None:
        return logging.getLogger(FETCH_LOGGER_NAME)
    return _current_logger


def reset() -> None:
    """Reset module-level session state (for testing only)."""
    global _current_logger, _session_handler  # noqa: PLW0603
    if _session_handler is not None:
        logging.getLogger(FETCH_LOGGER_NAME).removeHandler(_session_handler)
        _session_handler.close()
    _current_logger = None
    _session_handler = None
