"""
mDNS Discovery

Design Decision: Browse All Player Roles
========================================

BluOS players advertise one DNS-SD service per role:
- _musc._tcp  players
- _musp._tcp  secondary players (e.g. in a fixed group)
- _musz._tcp  zone (group) masters
- _mush._tcp  hubs

Each service type gets its own browse task. Resolved advertisements are
fanned into one queue; a collector turns them into devices until every
browse has finished at the deadline.

Only IPv4 is resolved: the players' HTTP API is addressed by IPv4 host and
port, which is also what LSDP reports, so ids from both mechanisms line up.

Error policy:
- A service type whose browse cannot start is logged and skipped
- The call fails only if nothing was found and at least one browse failed
"""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from zeroconf import IPVersion, ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from ..device import Device, join_host_port
from .base import Discoverer, DiscoveryError, remaining, sorted_devices

logger = logging.getLogger(__name__)

SERVICE_NAMES = ('musc', 'musp', 'musz', 'mush')
SERVICE_TYPES = tuple(f"_{name}._tcp.local." for name in SERVICE_NAMES)

POLL_INTERVAL = 0.15  # seconds
RESOLVE_TIMEOUT = 3.0  # seconds
QUEUE_SIZE = 64


@dataclass
class ServiceEntry:
    """A resolved DNS-SD advertisement."""
    name: str
    service_type: str
    addresses: List[str] = field(default_factory=list)
    port: int = 0
    text: List[str] = field(default_factory=list)

    @property
    def instance(self) -> str:
        """Instance label, e.g. "Kitchen" for "Kitchen._musc._tcp.local."."""
        suffix = f".{self.service_type}"
        if self.name.endswith(suffix):
            return self.name[:-len(suffix)]
        return self.name


class MDNSDiscovery(Discoverer):
    """Find players by browsing their DNS-SD service types."""

    source = 'mdns'

    def __init__(self, service_types: Iterable[str] = SERVICE_TYPES,
                 zeroconf_factory: Optional[Callable[[], AsyncZeroconf]] = None):
        """
        Initialize mDNS discovery.

        Args:
            service_types: Fully qualified DNS-SD types to browse
            zeroconf_factory: Builds the zeroconf instance (tests inject one)
        """
        self.service_types = list(service_types)
        self._zeroconf_factory = zeroconf_factory or _ipv4_zeroconf

    async def discover(self, deadline: float) -> List[Device]:
        try:
            aiozc = self._zeroconf_factory()
        except Exception as e:
            raise DiscoveryError(f"mdns: {e}", [e]) from e

        entries: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        errors: List[Exception] = []
        browses: List[_ServiceTypeBrowse] = []

        try:
            for service_type in self.service_types:
                browse = _ServiceTypeBrowse(service_type, entries, deadline)
                try:
                    browse.start(aiozc)
                except Exception as e:
                    logger.debug(f"mDNS: cannot browse {service_type}: {e}")
                    errors.append(e)
                    continue
                browses.append(browse)

            devices = await self._collect(browses, entries, deadline)
        finally:
            await aiozc.async_close()

        if not devices and errors:
            raise DiscoveryError(
                f"mdns: {'; '.join(str(e) for e in errors)}", errors
            )

        logger.debug(f"mDNS: found {len(devices)} devices")
        return devices

    async def _collect(self, browses: List['_ServiceTypeBrowse'],
                       entries: asyncio.Queue, deadline: float) -> List[Device]:
        """Drain the shared queue until every browse task has finished."""
        tasks = [asyncio.create_task(b.run()) for b in browses]

        async def close_when_done():
            await asyncio.gather(*tasks, return_exceptions=True)
            await entries.put(None)

        closer = asyncio.create_task(close_when_done())
        seen: Dict[str, Device] = {}
        try:
            while True:
                entry = await entries.get()
                if entry is None:
                    break
                add_entry(seen, entry)
        finally:
            for task in tasks + [closer]:
                task.cancel()
            await asyncio.gather(*tasks, closer, return_exceptions=True)

        return sorted_devices(seen.values())


class _ServiceTypeBrowse:
    """Browse one service type until the deadline, resolving what shows up."""

    def __init__(self, service_type: str, entries: asyncio.Queue, deadline: float):
        self.service_type = service_type
        self.entries = entries
        self.deadline = deadline
        self._browser: Optional[AsyncServiceBrowser] = None
        self._resolving: Set[asyncio.Task] = set()

    def start(self, aiozc: AsyncZeroconf):
        self._browser = AsyncServiceBrowser(
            aiozc.zeroconf,
            self.service_type,
            handlers=[self._on_service_state_change],
        )

    async def run(self):
        try:
            while True:
                left = remaining(self.deadline)
                if left <= 0:
                    break
                await asyncio.sleep(min(POLL_INTERVAL, left))
        finally:
            if self._browser:
                await self._browser.async_cancel()
            for task in self._resolving:
                task.cancel()
            await asyncio.gather(*self._resolving, return_exceptions=True)

    def _on_service_state_change(self, zeroconf, service_type, name, state_change):
        """Handle service discovery events (synchronous callback)."""
        if state_change not in (ServiceStateChange.Added, ServiceStateChange.Updated):
            return
        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._resolving.add(task)
        task.add_done_callback(self._resolving.discard)

    async def _resolve(self, zeroconf, service_type: str, name: str):
        timeout = min(RESOLVE_TIMEOUT, remaining(self.deadline))
        if timeout <= 0:
            return

        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, int(timeout * 1000)):
            logger.debug(f"mDNS: could not resolve {name}")
            return

        await self.entries.put(ServiceEntry(
            name=name,
            service_type=service_type,
            addresses=info.parsed_addresses(IPVersion.All),
            port=info.port or 0,
            text=_text_records(info.properties),
        ))


def _ipv4_zeroconf() -> AsyncZeroconf:
    return AsyncZeroconf(ip_version=IPVersion.V4Only)


def _text_records(properties) -> List[str]:
    """Render zeroconf's decoded TXT properties back to "key=value" strings."""
    records = []
    for key, value in (properties or {}).items():
        if key is None:
            continue
        key = key.decode('utf-8', errors='replace') if isinstance(key, bytes) else str(key)
        if value is None:
            records.append(key)
            continue
        value = value.decode('utf-8', errors='replace') if isinstance(value, bytes) else str(value)
        records.append(f"{key}={value}")
    return records


def pick_ipv4(addresses: Iterable[str]) -> Optional[str]:
    """First usable IPv4 address, skipping IPv6 and junk."""
    for addr in addresses:
        if not addr:
            continue
        try:
            ip = ipaddress.ip_address(addr)
        except ValueError:
            continue
        if ip.version == 4:
            return str(ip)
        if ip.ipv4_mapped is not None:
            return str(ip.ipv4_mapped)
    return None


def parse_txt(records: Iterable[str]) -> Dict[str, str]:
    """Parse "key=value" TXT strings; entries without '=' or a key are dropped."""
    out = {}
    for record in records:
        key, sep, value = record.strip().partition('=')
        key = key.strip()
        if not sep or not key:
            continue
        out[key] = value.strip()
    return out


def service_name(service_type: str) -> str:
    """Bare service name: "_musc._tcp.local." -> "musc"."""
    name = service_type.rstrip('.')
    if name.endswith('.local'):
        name = name[:-len('.local')]
    if name.endswith('._tcp'):
        name = name[:-len('._tcp')]
    return name.lstrip('_')


def device_from_entry(entry: ServiceEntry) -> Optional[Device]:
    """Build a device from an advertisement, or None if it has no IPv4 host and port."""
    if not entry.port:
        return None
    host = pick_ipv4(entry.addresses)
    if host is None:
        return None

    return Device(
        id=join_host_port(host, entry.port),
        host=host,
        port=entry.port,
        type=service_name(entry.service_type),
        version=parse_txt(entry.text).get('version', ''),
        source=MDNSDiscovery.source,
        name=entry.instance,
    )


def add_entry(seen: Dict[str, Device], entry: ServiceEntry):
    """
    Add an advertisement to `seen`, keyed by device id.

    The first advertisement of an id wins; a later one only backfills an
    empty version.
    """
    device = device_from_entry(entry)
    if device is None:
        return
    existing = seen.get(device.id)
    if existing is None:
        seen[device.id] = device
    elif not existing.version and device.version:
        existing.version = device.version


def collect_devices(entries: Iterable[ServiceEntry]) -> List[Device]:
    """Devices from a batch of advertisements, deduplicated and sorted."""
    seen: Dict[str, Device] = {}
    for entry in entries:
        add_entry(seen, entry)
    return sorted_devices(seen.values())
