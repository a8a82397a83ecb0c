"""
Device registry: the live set of meter adapters keyed by meter name.

The registry is refreshed on demand from the meters table (never by the
scheduler). Refreshing is an upsert per descriptor:

- Unknown name: build an adapter, append it, start its interval.
- Known name, new address: re-point the adapter and restart its interval.
- Known name, same address: nothing happens.

Adapters are kept in insertion order and never removed, so the order seen
by a fetch cycle is stable across refreshes.

Registry mutation and fetch cycles share ``lock``; a cycle never sees a
half-applied refresh.

CHANGELOG:
- 2026-10-04: Initial creation (STORY-104)

TODO:
- None
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from fetcher.src.device import DeviceAdapter, HttpDeviceAdapter, MeterDescriptor

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[MeterDescriptor], DeviceAdapter]
RegistrySource = Callable[[], Awaitable[Iterable[MeterDescriptor]]]


class DeviceRegistry:
    """Ordered, name-keyed collection of device adapters.

    Args:
        adapter_factory: Builds an adapter for a new descriptor. Defaults
            to :class:`HttpDeviceAdapter`.
    """

    def __init__(self, adapter_factory: AdapterFactory | None = None) -> None:
        self._factory: AdapterFactory = adapter_factory or HttpDeviceAdapter
        self._by_name: dict[str, DeviceAdapter] = {}
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._by_name)

    def all(self) -> list[DeviceAdapter]:
        """Return the adapters in insertion order (a snapshot copy)."""
        return list(self._by_name.values())

    def get(self, name: str) -> DeviceAdapter | None:
        return self._by_name.get(name)

    async def upsert(self, descriptor: MeterDescriptor) -> DeviceAdapter:
        """Insert or update one device and trigger its interval lifecycle.

        Caller must hold ``lock`` when running concurrently with cycles;
        :meth:`refresh` does so.

        Args:
            descriptor: The meter as currently stored.

        Returns:
            The adapter now registered under ``descriptor.name``.
        """
        adapter = self._by_name.get(descriptor.name)
        if adapter is None:
            adapter = self._factory(descriptor)
            self._by_name[descriptor.name] = adapter
            logger.info("Registered meter %s at %s", descriptor.name, descriptor.address)
            await adapter.attempt_start_interval()
            return adapter

        if adapter.address != descriptor.address:
            logger.info(
                "Meter %s moved from %s to %s",
                descriptor.name,
                adapter.address,
                descriptor.address,
            )
            adapter.address = descriptor.address
            await adapter.attempt_start_interval()
        return adapter

    async def refresh(self, source: RegistrySource) -> bool:
        """Reload active meters from *source* and upsert each of them.

        On a source failure the current device set is left untouched.

        Args:
            source: Coroutine function yielding the active descriptors.

        Returns:
            ``True`` if the source was read, ``False`` on failure.
        """
        try:
            descriptors = list(await source())
        except Exception:
            logger.error("Error fetching devices from meters table", exc_info=True)
            return False

        async with self.lock:
            for descriptor in descriptors:
                await self.upsert(descriptor)
        logger.info("Device registry refreshed (%d meters known)", len(self))
        return True
