"""
Fetcher entry point: configure logging and serve the control API.

Collection does not begin on its own; it is armed with
``POST /start-fetch``. On SIGTERM/SIGINT uvicorn runs the application
shutdown, which flushes open intervals with a final cycle and closes
the database pool.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-109)

TODO:
- None
"""

import logging

import uvicorn

from fetcher.src.api import create_app
from fetcher.src.config import get_settings
from fetcher.src.logging_config import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Load settings, install JSON logging and run the API server."""
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info(
        "Fetcher starting on %s:%d (timezone %s)",
        settings.api_host,
        settings.api_port,
        settings.fetch_timezone,
    )
    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
