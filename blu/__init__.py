"""
blu - BluOS command-line controller.

Finds players on the LAN and resolves a device argument to one of them.
"""

from .device import Device, parse_device

__version__ = '0.1.0'

__all__ = ['Device', 'parse_device']
