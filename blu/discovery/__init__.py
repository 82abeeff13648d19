"""
Discovery Module - Player Discovery on LAN

Finds BluOS players without a user-supplied address:
- mDNS (DNS-SD) - Standard service browsing
- LSDP - BluOS broadcast discovery protocol
"""

from .base import Discoverer, DiscoveryError
from .mdns import MDNSDiscovery
from .lsdp import LSDPDiscovery
from .manager import DiscoveryManager, discover, merge_devices

__all__ = [
    'Discoverer',
    'DiscoveryError',
    'MDNSDiscovery',
    'LSDPDiscovery',
    'DiscoveryManager',
    'discover',
    'merge_devices',
]
