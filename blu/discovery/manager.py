"""
Discovery Manager

Runs mDNS and LSDP side by side for one caller-supplied timeout and merges
what they find into one device list.

Either mechanism failing on its own is normal (the LSDP port is often held
by the vendor controller app, mDNS is often filtered on managed networks),
so a failure only surfaces when both fail.
"""

import asyncio
import dataclasses
import logging
from typing import Dict, Iterable, List, Optional

from ..device import Device
from .base import Discoverer, DiscoveryError, sorted_devices
from .lsdp import LSDPDiscovery
from .mdns import MDNSDiscovery

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0  # seconds

# Earlier sources win field conflicts and come first in Device.source
SOURCE_PRIORITY = (MDNSDiscovery.source, LSDPDiscovery.source)


class DiscoveryManager:
    """
    Finds players using multiple methods.

    Deduplicates devices discovered via different methods by id.
    """

    def __init__(self, mdns: Optional[Discoverer] = None, lsdp: Optional[Discoverer] = None):
        """
        Initialize discovery manager.

        Args:
            mdns: mDNS discoverer (defaults to MDNSDiscovery)
            lsdp: LSDP discoverer (defaults to LSDPDiscovery)
        """
        self._mdns = mdns or MDNSDiscovery()
        self._lsdp = lsdp or LSDPDiscovery()

    async def discover(self, timeout: float = DEFAULT_TIMEOUT) -> List[Device]:
        """
        Discover players for up to `timeout` seconds.

        Returns:
            Devices sorted by id, one per id

        Raises:
            DiscoveryError: both mechanisms failed; `errors` holds both causes
        """
        deadline = asyncio.get_running_loop().time() + timeout
        logger.info(f"Discovering players for {timeout}s...")

        mdns_result, lsdp_result = await asyncio.gather(
            self._mdns.discover(deadline),
            self._lsdp.discover(deadline),
            return_exceptions=True,
        )
        for result in (mdns_result, lsdp_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        mdns_failed = isinstance(mdns_result, Exception)
        lsdp_failed = isinstance(lsdp_result, Exception)

        if mdns_failed and lsdp_failed:
            raise DiscoveryError(
                f"discovery failed: {mdns_result}; {lsdp_result}",
                [mdns_result, lsdp_result],
            )
        if mdns_failed:
            logger.debug(f"mDNS failed, using LSDP only: {mdns_result}")
            mdns_result = []
        if lsdp_failed:
            logger.debug(f"LSDP failed, using mDNS only: {lsdp_result}")
            lsdp_result = []

        devices = merge_devices(mdns_result, lsdp_result)
        logger.info(f"Discovered {len(devices)} players")
        return devices


async def discover(timeout: float = DEFAULT_TIMEOUT) -> List[Device]:
    """Discover players with the default mechanisms."""
    return await DiscoveryManager().discover(timeout)


def merge_devices(*groups: Iterable[Device]) -> List[Device]:
    """
    Merge device lists from several mechanisms into one list sorted by id.

    Records sharing an id become one record: the higher-priority source
    supplies every field it has, the other only fills empty
    version/type/name, and the source tokens are combined.
    """
    merged: Dict[str, Device] = {}
    for group in groups:
        for device in group:
            existing = merged.get(device.id)
            merged[device.id] = merge_device(existing, device) if existing else dataclasses.replace(device)
    return sorted_devices(merged.values())


def merge_device(a: Device, b: Device) -> Device:
    """Combine two records of the same device."""
    if _priority(b.source) < _priority(a.source):
        a, b = b, a
    return dataclasses.replace(
        a,
        version=a.version or b.version,
        type=a.type or b.type,
        name=a.name or b.name,
        source=join_sources(a.source, b.source),
    )


def join_sources(*sources: str) -> str:
    """Union of "+"-joined source tokens, in canonical order."""
    tokens = {t for s in sources for t in s.split('+') if t}
    return '+'.join(sorted(tokens, key=lambda t: (_priority(t), t)))


def _priority(source: str) -> int:
    first = source.split('+')[0]
    if first in SOURCE_PRIORITY:
        return SOURCE_PRIORITY.index(first)
    return len(SOURCE_PRIORITY)
