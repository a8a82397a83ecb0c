"""
Meter device adapters.

A device adapter owns communication with one meter: opening a measurement
interval, closing it (which yields the consumption measured since it was
opened) and reading a status snapshot. Every adapter honours the same
contract so the rest of the fetcher never touches the transport:

- ``attempt_start_interval()`` is idempotent and returns nothing.
- ``close_interval()`` returns an :class:`IntervalReading` or ``None``;
  network and payload errors are logged at WARNING and reported as ``None``.
- ``get_status()`` returns a plain dict for reporting.

``HttpDeviceAdapter`` talks to meters that expose the interval API over
HTTP at ``http://{address}/api/...``.

CHANGELOG:
- 2026-10-03: Initial creation (STORY-102)
- 2026-10-07: Reset interval flag on address change (STORY-105)

TODO:
- None
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

# Default request timeout in seconds.
_DEFAULT_TIMEOUT: float = 10.0

# Fields a close response must carry.
_REQUIRED_READING_KEYS: frozenset[str] = frozenset(
    {"timestamp", "duration", "consumption"}
)


@dataclass(frozen=True)
class MeterDescriptor:
    """A row of the meters table as seen by the registry."""

    id: int
    name: str
    address: str
    active: bool = True


@dataclass(frozen=True)
class IntervalReading:
    """Outcome of closing one measurement interval.

    Attributes:
        timestamp: Interval start as epoch seconds (zone-naive).
        duration: Interval length in seconds.
        consumption: Energy consumed during the interval in Wh.
    """

    timestamp: float
    duration: int
    consumption: float


class DeviceAdapter(Protocol):
    """Capability the registry and the fetch cycle require of a meter."""

    id: int
    name: str
    address: str

    async def attempt_start_interval(self) -> None: ...

    async def close_interval(self) -> IntervalReading | None: ...

    async def get_status(self) -> dict[str, Any]: ...


class HttpDeviceAdapter:
    """Adapter for meters speaking the interval API over plain HTTP.

    Endpoints (relative to ``http://{address}``):
    - ``POST /api/interval/start``: open an interval.
    - ``POST /api/interval/close``: close the open interval and
      immediately open the next; responds with ``timestamp``,
      ``duration`` and ``consumption``.
    - ``GET /api/status``: device-specific status JSON.

    Args:
        descriptor: Identity and address of the meter.
        timeout: HTTP request timeout in seconds.
    """

    def __init__(
        self,
        descriptor: MeterDescriptor,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.id = descriptor.id
        self.name = descriptor.name
        self._address = descriptor.address
        self._timeout = timeout
        self._interval_active = False
        self._online: bool | None = None

    def __repr__(self) -> str:
        return f"HttpDeviceAdapter(id={self.id!r}, name={self.name!r}, address={self._address!r})"

    @property
    def address(self) -> str:
        return self._address

    @address.setter
    def address(self, value: str) -> None:
        # A new address is a different connection; the old interval is gone.
        if value != self._address:
            self._address = value
            self._interval_active = False

    @property
    def interval_active(self) -> bool:
        return self._interval_active

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def attempt_start_interval(self) -> None:
        """Open a measurement interval unless one is already open."""
        if self._interval_active:
            return
        response = await self._request("POST", "/api/interval/start")
        if response is None:
            return
        self._interval_active = True
        logger.info("Meter %s: interval started at %s", self.name, self._address)

    async def close_interval(self) -> IntervalReading | None:
        """Close the open interval and return what it measured.

        When no interval is open, a start is attempted instead and the
        result is ``None`` because nothing was measured yet.

        Returns:
            The reading, or ``None`` on any communication or payload error.
        """
        if not self._interval_active:
            logger.warning("Meter %s: no open interval, starting one", self.name)
            await self.attempt_start_interval()
            return None

        response = await self._request("POST", "/api/interval/close")
        if response is None:
            self._interval_active = False
            return None

        try:
            return _parse_reading(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Meter %s: malformed close response: %s", self.name, exc)
            return None

    async def get_status(self) -> dict[str, Any]:
        """Return a status snapshot; ``device`` is ``None`` when unreachable."""
        response = await self._request("GET", "/api/status")
        device: Any = None
        if response is not None:
            try:
                device = response.json()
            except ValueError:
                logger.warning("Meter %s: status response is not JSON", self.name)
        return {
            "id": self.id,
            "name": self.name,
            "address": self._address,
            "interval_active": self._interval_active,
            "online": self._online,
            "device": device,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str) -> httpx.Response | None:
        """Send one request; return the response on 2xx, else ``None``."""
        url = f"http://{self._address}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._online = True
            logger.warning(
                "Meter %s: HTTP error %s for %s: %s",
                self.name,
                exc.response.status_code,
                url,
                exc,
            )
            return None
        except httpx.TimeoutException as exc:
            self._online = False
            logger.warning("Meter %s: timeout for %s: %s", self.name, url, exc)
            return None
        except httpx.TransportError as exc:
            self._online = False
            logger.warning("Meter %s: connection error for %s: %s", self.name, url, exc)
            return None

        self._online = True
        return response


def _parse_reading(payload: dict) -> IntervalReading:
    """Build an IntervalReading from a close response body.

    Raises:
        TypeError: If the body is not a JSON object.
        ValueError: If a required field is missing or not numeric.
    """
    if not isinstance(payload, dict):
        raise TypeError(f"expected a JSON object, got {type(payload).__name__}")
    missing = _REQUIRED_READING_KEYS - payload.keys()
    if missing:
        raise ValueError(f"missing field(s): {', '.join(sorted(missing))}")
    return IntervalReading(
        timestamp=float(payload["timestamp"]),
        duration=int(payload["duration"]),
        consumption=float(payload["consumption"]),
    )
