"""
LSDP Packet Codec

LSDP is the BluOS broadcast discovery protocol. Players answer a query
broadcast on UDP 11430 with announce messages sent to the same port.

Packet Format:
```
+-----------+--------+---------+------------------------------+
| HdrLen 1B | "LSDP" | Ver 1B  | Message | Message | ...       |
+-----------+--------+---------+------------------------------+

Message:   Len(1) Type(1) Body(Len - 2)

Query 'Q': Len=5 'Q' Subtype(1) Class(2, BE)

Announce 'A':
  NodeIdLen(1) NodeId  AddrLen(1)=4 Addr(4)  RecordCount(1)
  Record * RecordCount:
    Class(2, BE)  TxtCount(1)
    Txt * TxtCount:  KeyLen(1) Key  ValLen(1) Val
```

Packets arrive from anyone on the broadcast domain, so every length field
is checked against what is actually left in the buffer. A bad header means
"not parsed"; a bad announce is dropped and parsing moves on to the next
message.
"""

import socket
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..device import DEFAULT_PORT

MAGIC = b'LSDP'
PROTOCOL_VERSION = 1
HEADER_LENGTH = 6

MSG_ANNOUNCE = ord('A')
MSG_QUERY = ord('Q')
QUERY_SUBTYPE = 1

# Wildcard class: ask every device class to answer
CLASS_ALL = 0xFFFF

# Player classes and the mDNS service name each one corresponds to
PLAYER_CLASSES: Dict[int, str] = {
    0x0001: 'musc',
    0x0003: 'musp',
    0x0006: 'musz',
    0x0008: 'mush',
}


@dataclass
class LSDPRecord:
    """One capability record of an announce."""
    device_class: int
    txt: Dict[str, str] = field(default_factory=dict)


@dataclass
class LSDPAnnounce:
    """A device announcing its address and records."""
    node_id: bytes
    address: str
    records: List[LSDPRecord] = field(default_factory=list)


class _Truncated(Exception):
    pass


class _Reader:
    """Cursor over one message that refuses to read past its end."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def byte(self) -> int:
        if self.offset >= len(self.data):
            raise _Truncated()
        value = self.data[self.offset]
        self.offset += 1
        return value

    def take(self, n: int) -> bytes:
        if self.offset + n > len(self.data):
            raise _Truncated()
        value = self.data[self.offset:self.offset + n]
        self.offset += n
        return value

    def uint16(self) -> int:
        return struct.unpack('>H', self.take(2))[0]

    def short_string(self) -> str:
        return self.take(self.byte()).decode('utf-8', errors='replace')


def _header() -> bytes:
    return bytes([HEADER_LENGTH]) + MAGIC + bytes([PROTOCOL_VERSION])


def build_query(device_class: int = CLASS_ALL) -> bytes:
    """
    Build a query packet.

    The default asks all classes and is exactly the 11 bytes the BluOS
    controller app sends: 06 'LSDP' 01 05 'Q' 01 FF FF.
    """
    message = struct.pack('>BBBH', 5, MSG_QUERY, QUERY_SUBTYPE, device_class)
    return _header() + message


def build_announce(node_id: bytes, address: str, records: Sequence[LSDPRecord]) -> bytes:
    """
    Build a single-announce packet, as a player would send it.

    Raises:
        ValueError: a field does not fit its one-byte length
    """
    body = bytearray([MSG_ANNOUNCE])
    body.append(_length(len(node_id)))
    body += node_id
    body.append(4)
    body += socket.inet_aton(address)
    body.append(_length(len(records)))
    for record in records:
        body += struct.pack('>H', record.device_class)
        body.append(_length(len(record.txt)))
        for key, value in record.txt.items():
            for text in (key, value):
                raw = text.encode('utf-8')
                body.append(_length(len(raw)))
                body += raw
    message = bytes([_length(len(body) + 1)]) + bytes(body)
    return _header() + message


def _length(n: int) -> int:
    if n > 255:
        raise ValueError(f"LSDP field too long: {n} bytes")
    return n


def parse_packet(packet: bytes) -> Optional[List[LSDPAnnounce]]:
    """
    Parse a received packet.

    Returns:
        None if the header is invalid; otherwise the announces found, which
        may be empty (a query, or only malformed announces)
    """
    if len(packet) < HEADER_LENGTH:
        return None
    header_length = packet[0]
    if header_length < HEADER_LENGTH or header_length > len(packet):
        return None
    if packet[1:5] != MAGIC:
        return None
    # packet[5] is the protocol version; any value is accepted

    announces = []
    offset = header_length
    while offset < len(packet):
        length = packet[offset]
        if length <= 0 or offset + length > len(packet):
            break
        message = packet[offset:offset + length]
        offset += length

        if len(message) < 2:
            continue
        if message[1] == MSG_ANNOUNCE:
            announce = parse_announce(message)
            if announce is not None:
                announces.append(announce)
    return announces


def parse_announce(message: bytes) -> Optional[LSDPAnnounce]:
    """Parse one 'A' message (length and type bytes included)."""
    reader = _Reader(message, offset=2)
    try:
        node_id = reader.take(reader.byte())

        if reader.byte() != 4:
            return None
        address = socket.inet_ntoa(reader.take(4))

        records = []
        for _ in range(reader.byte()):
            device_class = reader.uint16()
            txt = {}
            for _ in range(reader.byte()):
                key = reader.short_string()
                value = reader.short_string()
                if key:
                    txt[key] = value
            records.append(LSDPRecord(device_class=device_class, txt=txt))
    except _Truncated:
        return None

    return LSDPAnnounce(node_id=node_id, address=address, records=records)


def is_player_class(device_class: int) -> bool:
    return device_class in PLAYER_CLASSES


def class_to_type(device_class: int) -> str:
    """Map an LSDP class to its device type tag ("" if unknown)."""
    return PLAYER_CLASSES.get(device_class, '')


def parse_port(value: str) -> int:
    """
    Parse a TXT port value.

    Raises:
        ValueError: not a decimal integer in 1..65535
    """
    value = value.strip()
    if not value.isascii() or not value.isdigit():
        raise ValueError(f"invalid port: {value!r}")
    port = int(value)
    if not 0 < port <= 65535:
        raise ValueError(f"invalid port: {port}")
    return port


def record_port(record: LSDPRecord) -> int:
    """Port advertised by a record, or the BluOS default."""
    try:
        return parse_port(record.txt['port'])
    except (KeyError, ValueError):
        return DEFAULT_PORT
