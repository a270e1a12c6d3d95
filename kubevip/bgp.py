"""BGP peer and server configuration."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field

DEFAULT_BGP_PORT = 179

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INT_RE = re.compile(r"[+-]?[0-9]+")


class BGPConfigError(ValueError):
    """Raised when a BGP configuration string cannot be understood."""


@dataclass
class Peer:
    """A BGP peer."""

    address: str = ""
    as_number: int = 0
    password: str = ""
    multihop: bool = False


@dataclass
class BGPConfig:
    """Settings of the local BGP speaker."""

    as_number: int = 0
    router_id: str = ""
    next_hop: str = ""
    source_ip: str = ""
    source_if: str = ""
    peers: list[Peer] = field(default_factory=list)
    ipv6: bool = False

    def next_hop_for(self) -> str:
        """Return the next hop to advertise: next_hop, else source_ip, else router_id."""
        if self.next_hop:
            return self.next_hop
        if self.source_ip:
            return self.source_ip
        return self.router_id

    def prefix_length(self, ip) -> int | None:
        """Return the host prefix length for ``ip``, or None for IPv6 when IPv6 is off."""
        address = ipaddress.ip_address(str(ip))
        if address.version == 4:
            return 32
        if address.ipv4_mapped is not None:
            return 32
        if not self.ipv6:
            return None
        return 128


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(text)


def split_peer_address(address: str) -> tuple[str, int]:
    """Split ``host[:port]`` into host and port, the port defaulting to 179."""
    host, sep, port_text = address.partition(":")
    if not sep:
        return address, DEFAULT_BGP_PORT
    if not _INT_RE.fullmatch(port_text):
        raise BGPConfigError(f"Unable to parse port '{port_text}' as int")
    return host, int(port_text)


def parse_bgp_peer_config(config: str) -> list[Peer]:
    """Parse a comma separated list of ``<host>:<AS>:<password>:<multihop>`` peers."""
    peers = []
    for entry in config.split(","):
        parts = entry.split(":")
        if len(parts) != 4:
            raise BGPConfigError(
                "BGP Peer configuration format error <host>:<AS>:<password>:<multihop>"
            )
        host, as_text, secret, multihop_text = parts
        if not _INT_RE.fullmatch(as_text):
            raise BGPConfigError(f"BGP Peer AS format error [{as_text}]")
        try:
            multihop = _parse_bool(multihop_text)
        except ValueError:
            raise BGPConfigError(
                f"BGP MultiHop format error (true/false) [{multihop_text}]"
            ) from None
        peers.append(
            Peer(
                address=host,
                as_number=int(as_text) & 0xFFFFFFFF,
                password=secret,
                multihop=multihop,
            )
        )
    return peers