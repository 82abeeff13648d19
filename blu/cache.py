"""
Discovery Cache

Remembers the last discovery result so later commands can resolve a device
without waiting for the network.

File format (discovery.json):
```
{
  "updated_at": "2026-01-01T12:00:00+00:00",
  "devices": [{"id": "192.168.1.20:11000", "host": "192.168.1.20", "port": 11000, ...}]
}
```
"""

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .device import Device, join_host_port

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """Lowercase and keep only letters and digits ("Living-Room 2" -> "livingroom2")."""
    return ''.join(ch for ch in name.strip().lower() if ch.isalnum())


def match_by_name(query: str, devices: Iterable[Device]) -> List[Device]:
    """
    Devices whose name matches `query`.

    Exact matches (after normalization) take precedence; otherwise devices
    whose name contains the query, or is contained in it.
    """
    q = normalize_name(query)
    if not q:
        return []

    exact = []
    fuzzy = []
    for device in devices:
        n = normalize_name(device.name)
        if not n:
            continue
        if n == q:
            exact.append(device)
        elif q in n or n in q:
            fuzzy.append(device)
    return exact or fuzzy


@dataclass
class DiscoveryCache:
    """Devices from the last discovery run."""
    updated_at: Optional[datetime] = None
    devices: List[Device] = field(default_factory=list)

    @classmethod
    def from_devices(cls, devices: Iterable[Device],
                     updated_at: Optional[datetime] = None) -> 'DiscoveryCache':
        """Build a cache, dropping devices without a host or port."""
        kept = []
        for device in devices:
            if not device.is_addressable:
                continue
            if not device.id:
                device = replace(device, id=join_host_port(device.host, device.port))
            kept.append(device)
        return cls(updated_at=updated_at or datetime.now(timezone.utc), devices=kept)

    @classmethod
    def load(cls, path: Path) -> 'DiscoveryCache':
        """
        Load a cache file; a missing file is an empty cache.

        Raises:
            OSError: the file cannot be read
            ValueError: the file is not a valid cache
        """
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        try:
            updated_at = data.get('updated_at')
            return cls.from_devices(
                (Device.from_dict(d) for d in data.get('devices') or []),
                updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
            )
        except (AttributeError, TypeError) as e:
            raise ValueError(f"malformed cache file {path}: {e}") from e

    def save(self, path: Path):
        """Save the cache as JSON, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write('\n')
        logger.debug(f"Saved {len(self.devices)} devices to {path}")

    def to_dict(self) -> dict:
        return {
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'devices': [d.to_dict() for d in self.devices],
        }

    def lookup(self, id_or_host_port: str) -> Optional[Device]:
        for device in self.devices:
            if id_or_host_port in (device.id, join_host_port(device.host, device.port)):
                return device
        return None

    def find_by_name(self, query: str) -> List[Device]:
        return match_by_name(query, self.devices)
