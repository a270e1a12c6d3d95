"""Discovery of network interface addresses."""

from __future__ import annotations

import ipaddress
import socket

import psutil


class InterfaceNotFoundError(LookupError):
    """Raised when no matching interface with a usable address exists."""


def find_ip_address(interface_name: str) -> tuple[str, str]:
    """Return ``(interface, address)`` for the named interface.

    With an empty name the first interface holding a non-loopback address is used.
    """
    for name, addresses in psutil.net_if_addrs().items():
        for entry in addresses:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            text = entry.address.split("%", 1)[0]
            try:
                ip = ipaddress.ip_address(text)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            if not interface_name or name == interface_name:
                return name, str(ip)
    raise InterfaceNotFoundError(f"Unknown interface [{interface_name}]")