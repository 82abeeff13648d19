import asyncio
import socket
from typing import List, Optional

from blu.device import Device
from blu.discovery import Discoverer


class FakeDiscoverer(Discoverer):
    """Returns canned devices (or raises) after an optional delay."""

    def __init__(self, devices: Optional[List[Device]] = None,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.devices = devices or []
        self.error = error
        self.delay = delay
        self.deadlines: List[float] = []

    async def discover(self, deadline: float) -> List[Device]:
        self.deadlines.append(deadline)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.devices)


class FakeManager:
    """Stands in for DiscoveryManager in resolution and CLI tests."""

    def __init__(self, devices: Optional[List[Device]] = None, error: Optional[Exception] = None):
        self.devices = devices or []
        self.error = error
        self.calls: List[float] = []

    async def discover(self, timeout: float = 5.0) -> List[Device]:
        self.calls.append(timeout)
        if self.error is not None:
            raise self.error
        return list(self.devices)


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]
