"""
Timestamp localization for meter readings.

Meters report the start of an interval as zone-naive epoch seconds. The
storage layer expects wall-clock local time in the plant's zone, so every
reading is converted here before it is batched.

CHANGELOG:
- 2026-10-03: Initial creation (STORY-103)

TODO:
- None
"""

from datetime import datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/Berlin"

# Wall-clock format stored in meter_readings.timestamp_start.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_unix_time(timestamp: float, tz: str = DEFAULT_TIMEZONE) -> str:
    """Render epoch seconds as local wall-clock time in *tz*.

    Daylight-saving transitions follow the tz database, so the same
    local hour can appear twice in autumn and one hour is skipped in
    spring.

    Args:
        timestamp: Seconds since the Unix epoch (UTC based).
        tz: IANA zone name. Defaults to ``Europe/Berlin``.

    Returns:
        The local time formatted as ``YYYY-MM-DD HH:MM:SS``.
    """
    return datetime.fromtimestamp(timestamp, tz=ZoneInfo(tz)).strftime(TIMESTAMP_FORMAT)


def parse_local_time(value: str) -> datetime:
    """Parse a string produced by :func:`format_unix_time` (naive result)."""
    return datetime.strptime(value, TIMESTAMP_FORMAT)
