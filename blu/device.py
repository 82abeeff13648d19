"""
Device Record

The shared result type produced by every discovery mechanism and consumed
by the merge step, the discovery cache and device resolution.

Identity: `id` is always "host:port". Two records with the same id are the
same physical player, no matter which mechanism found them.

JSON shape:
```
{"id": "192.168.1.20:11000", "host": "192.168.1.20", "port": 11000,
 "type": "musc", "version": "4.2.1", "source": "mdns+lsdp", "name": "Kitchen"}
```
`version`, `source` and `name` are omitted when empty.
"""

import ipaddress
from dataclasses import dataclass
from typing import Any, Dict
from urllib.parse import urlsplit

# BluOS HTTP API port; also the LSDP default when a record omits "port"
DEFAULT_PORT = 11000


def join_host_port(host: str, port: int) -> str:
    """Build a "host:port" id, bracketing IPv6 literals."""
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class Device:
    """A player found on the network."""
    id: str
    host: str
    port: int
    type: str = ''
    version: str = ''
    source: str = ''
    name: str = ''

    @property
    def is_addressable(self) -> bool:
        """Records with no host or port are never surfaced."""
        return bool(self.host) and self.port != 0

    @property
    def base_url(self) -> str:
        return f"http://{join_host_port(self.host or '127.0.0.1', self.port or DEFAULT_PORT)}/"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'host': self.host,
            'port': self.port,
            'type': self.type,
        }
        for key in ('version', 'source', 'name'):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Device':
        host = str(data.get('host') or '')
        port = int(data.get('port') or 0)
        return cls(
            id=str(data.get('id') or ''),
            host=host,
            port=port,
            type=str(data.get('type') or ''),
            version=str(data.get('version') or ''),
            source=str(data.get('source') or ''),
            name=str(data.get('name') or ''),
        )


def parse_device(text: str) -> Device:
    """
    Parse a user-supplied device address.

    Accepts "host", "host:port", "[v6addr]:port" and "http(s)://host[:port]".
    The port defaults to 11000.

    Raises:
        ValueError: empty input, missing host or a bad port
    """
    text = text.strip()
    if not text:
        raise ValueError("empty device")

    if text.startswith(('http://', 'https://')):
        parts = urlsplit(text)
        host = parts.hostname or ''
        port = parts.port or DEFAULT_PORT
    else:
        host, port = _split_host_port(text)

    host = host.strip('[]')
    if not host:
        raise ValueError(f"missing host in {text!r}")
    if not 0 < port <= 65535:
        raise ValueError(f"invalid port {port} in {text!r}")

    return Device(id=join_host_port(host, port), host=host, port=port)


def _split_host_port(text: str):
    if text.startswith('['):
        host, sep, rest = text[1:].partition(']')
        if not sep:
            raise ValueError(f"unterminated IPv6 literal in {text!r}")
        if rest.startswith(':'):
            return host, int(rest[1:])
        return host, DEFAULT_PORT

    # A bare IPv6 literal has several colons and no port
    if text.count(':') > 1:
        ipaddress.IPv6Address(text)
        return text, DEFAULT_PORT

    host, sep, port = text.partition(':')
    if sep:
        return host, int(port)
    return host, DEFAULT_PORT
