"""
Device Resolution

Turns what the user typed (or nothing) into one player.

Order:
1. Explicit argument, then the configured default (BLU_DEVICE overrides
   it when the config is loaded)
2. Config aliases are expanded
3. Cache lookup by id or host:port
4. Name match against the cache, then against a live discovery run
5. The argument as a literal address

With no argument at all, a cache holding exactly one device wins;
otherwise discovery must find exactly one player.
"""

import ipaddress
import logging
from typing import List, Optional

from .cache import DiscoveryCache, match_by_name
from .config import Config
from .device import Device, parse_device
from .discovery import DiscoveryManager

logger = logging.getLogger(__name__)


class DeviceResolutionError(Exception):
    """No single device matches."""

    def __init__(self, message: str, candidates: Optional[List[Device]] = None):
        super().__init__(message)
        self.candidates = candidates or []


def likely_name_arg(text: str) -> bool:
    """Whether `text` looks like a player name rather than an address."""
    text = text.strip()
    if not text:
        return False
    if text.startswith(('http://', 'https://')):
        return False
    if ':' in text or '/' in text:
        return False
    if any(ch.isspace() for ch in text):
        return True
    if '.' in text:
        return False
    try:
        ipaddress.ip_address(text.strip('[]'))
    except ValueError:
        return True
    return False


def format_candidates(devices: List[Device]) -> str:
    return ', '.join(f"{d.name.strip() or d.id} ({d.host}:{d.port})" for d in devices)


async def resolve_device(arg: str, config: Config, cache: DiscoveryCache,
                         manager: Optional[DiscoveryManager] = None,
                         allow_discover: bool = True,
                         timeout: Optional[float] = None) -> Device:
    """
    Resolve a device argument to a single device.

    Args:
        arg: What the user passed ("" for nothing)
        config: Loaded configuration (default device and aliases)
        cache: Last discovery result
        manager: Discovery to run when the cache is not enough
        allow_discover: Whether live discovery may be used
        timeout: Discovery timeout (defaults to the configured one)

    Raises:
        DeviceResolutionError: nothing or more than one device matches
        DiscoveryError: live discovery failed
    """
    timeout = config.discover_timeout if timeout is None else timeout
    raw = arg.strip() or config.default_device.strip()

    if raw:
        raw = config.aliases.get(raw, raw)

        cached = cache.lookup(raw)
        if cached is not None:
            return cached

        if likely_name_arg(raw):
            matches = cache.find_by_name(raw)
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise DeviceResolutionError(
                    f"ambiguous device name {raw!r}; matches: {format_candidates(matches)}",
                    matches,
                )

            if allow_discover:
                devices = await (manager or DiscoveryManager()).discover(timeout)
                matches = match_by_name(raw, devices)
                if len(matches) == 1:
                    return matches[0]
                if len(matches) > 1:
                    raise DeviceResolutionError(
                        f"ambiguous device name {raw!r}; matches: {format_candidates(matches)}",
                        matches,
                    )

        try:
            return parse_device(raw)
        except ValueError:
            raise DeviceResolutionError(
                f"unable to resolve {raw!r} (set --device or BLU_DEVICE)"
            ) from None

    if len(cache.devices) == 1:
        return cache.devices[0]

    if not allow_discover:
        raise DeviceResolutionError("no device selected")

    devices = await (manager or DiscoveryManager()).discover(timeout)
    if len(devices) == 1:
        return devices[0]
    if not devices:
        raise DeviceResolutionError("no devices discovered (run `blu devices` or set --device)")
    raise DeviceResolutionError(
        f"multiple devices discovered ({len(devices)}); pick one with --device",
        devices,
    )
