"""
Discoverer capability shared by the mDNS and LSDP mechanisms.

Every discoverer takes an absolute deadline on the running loop's clock
(`loop.time()`) and returns whatever it found by then. The coordinator
hands the same deadline to all of them, so one caller-supplied timeout
bounds the whole operation.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Sequence

from ..device import Device


class DiscoveryError(Exception):
    """A discovery mechanism (or all of them) failed."""

    def __init__(self, message: str, errors: Sequence[BaseException] = ()):
        super().__init__(message)
        self.errors = list(errors)


class Discoverer(ABC):
    """One way of finding players on the LAN."""

    #: Token recorded in `Device.source`
    source: str = ''

    @abstractmethod
    async def discover(self, deadline: float) -> List[Device]:
        """
        Find devices until `deadline`.

        Returns:
            Devices sorted by id, at most one per id

        Raises:
            DiscoveryError: the mechanism could not run at all
        """


def remaining(deadline: float) -> float:
    """Seconds left until `deadline` on the running loop's clock."""
    return deadline - asyncio.get_running_loop().time()


def sorted_devices(devices) -> List[Device]:
    return sorted(devices, key=lambda d: d.id)
