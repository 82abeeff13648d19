"""
LSDP Discovery

Design Decision: One Socket for Query and Listen
================================================

Players answer a query by broadcasting their announce to UDP 11430, not by
replying to the sender's ephemeral port. So the query has to go out from a
socket bound to 11430 on all interfaces, and the same socket listens.

Binding without SO_REUSEADDR/SO_REUSEPORT is deliberate: if the BluOS
Controller app already holds the port, the bind fails and LSDP reports a
hard error instead of silently sharing (and racing for) datagrams. The
coordinator then falls back to mDNS results.

Query schedule:
- 7 queries at 0, 1, 2, 3, 5, 7 and 10 seconds after start, each with up
  to 250 ms of jitter, the same probing pattern the vendor app uses
- Sent to the broadcast address of every IPv4 interface that is up,
  or 255.255.255.255 when none is found

Receive loop:
- Socket reads are bounded to 150 ms so the deadline is noticed promptly
- A read timeout just loops; any other socket error ends the loop with
  the devices found so far
"""

import asyncio
import ipaddress
import logging
import random
import socket
from typing import Dict, Iterable, List, Optional

import psutil

from ..device import Device, join_host_port
from .base import Discoverer, DiscoveryError, remaining, sorted_devices
from .packet import (
    LSDPAnnounce,
    build_query,
    class_to_type,
    is_player_class,
    parse_packet,
    record_port,
)

logger = logging.getLogger(__name__)

LSDP_PORT = 11430

QUERY_SCHEDULE = (0, 1, 2, 3, 5, 7, 10)  # seconds from start
QUERY_JITTER = 0.25  # seconds
READ_TIMEOUT = 0.15  # seconds

GLOBAL_BROADCAST = '255.255.255.255'
RECV_BUFFER = 2048
SOCKET_BUFFER = 1 << 20


class LSDPDiscovery(Discoverer):
    """
    Find players with the LSDP broadcast protocol.

    Each call to discover() opens and closes its own socket.
    """

    source = 'lsdp'

    def __init__(self, port: int = LSDP_PORT,
                 broadcast_addresses: Optional[List[str]] = None):
        """
        Initialize LSDP discovery.

        Args:
            port: UDP port to bind and query (tests use an ephemeral port)
            broadcast_addresses: Query destinations; detected from the
                network interfaces if not given
        """
        self.port = port
        self.broadcast_addresses = broadcast_addresses

    async def discover(self, deadline: float) -> List[Device]:
        addresses = self.broadcast_addresses or interface_broadcast_addresses()
        sock = self._open_socket()
        loop = asyncio.get_running_loop()
        logger.debug(f"LSDP: querying {', '.join(addresses)} on port {self.port}")

        sender = asyncio.create_task(self._send_queries(sock, addresses, loop.time()))
        try:
            devices = await self._receive_loop(sock, deadline)
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            sock.close()

        logger.debug(f"LSDP: found {len(devices)} devices")
        return devices

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            for option in (socket.SO_RCVBUF, socket.SO_SNDBUF):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, option, SOCKET_BUFFER)
                except OSError:
                    pass  # kernel default is fine
            sock.bind(('', self.port))
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            logger.debug(f"LSDP: cannot bind UDP port {self.port}: {e}")
            raise DiscoveryError(f"lsdp: bind udp port {self.port}: {e}", [e]) from e
        return sock

    async def _send_queries(self, sock: socket.socket, addresses: List[str], start: float):
        """Send the query on the fixed schedule."""
        loop = asyncio.get_running_loop()
        query = build_query()

        for offset in QUERY_SCHEDULE:
            delay = start + offset + random.uniform(0, QUERY_JITTER) - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            for addr in addresses:
                try:
                    await loop.sock_sendto(sock, query, (addr, self.port))
                except OSError as e:
                    logger.debug(f"LSDP: query to {addr} failed: {e}")

    async def _receive_loop(self, sock: socket.socket, deadline: float) -> List[Device]:
        """Collect announces until the deadline or a permanent socket error."""
        loop = asyncio.get_running_loop()
        seen: Dict[str, Device] = {}

        while True:
            timeout = min(READ_TIMEOUT, remaining(deadline))
            if timeout <= 0:
                break

            try:
                data, addr = await asyncio.wait_for(
                    loop.sock_recvfrom(sock, RECV_BUFFER), timeout
                )
            except asyncio.TimeoutError:
                continue
            except OSError as e:
                logger.debug(f"LSDP: receive stopped: {e}")
                break

            announces = parse_packet(data)
            if announces is None:
                logger.debug(f"LSDP: ignoring malformed packet from {addr[0]}")
                continue

            for announce in announces:
                for device in devices_from_announce(announce):
                    seen.setdefault(device.id, device)

        return sorted_devices(seen.values())


def devices_from_announce(announce: LSDPAnnounce) -> List[Device]:
    """Turn the player records of an announce into devices."""
    devices = []
    for record in announce.records:
        if not is_player_class(record.device_class):
            continue
        port = record_port(record)
        devices.append(Device(
            id=join_host_port(announce.address, port),
            host=announce.address,
            port=port,
            type=class_to_type(record.device_class),
            version=record.txt.get('version', ''),
            source=LSDPDiscovery.source,
            name=record.txt.get('name', ''),
        ))
    return devices


def interface_broadcast_addresses() -> List[str]:
    """Broadcast address of every IPv4 interface that is up."""
    stats = psutil.net_if_stats()
    addresses: List[str] = []

    for name, addrs in psutil.net_if_addrs().items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                network = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
            addresses.append(str(network.broadcast_address))

    return _unique(addresses) or [GLOBAL_BROADCAST]


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))
