"""Private LAN address policy for device targets.

The device address comes from the caller, so every gateway call checks it
first; only RFC 1918 IPv4 literals (with an optional port) are reachable.
"""

from __future__ import annotations

import ipaddress
from typing import Any

from ..errors import AddressNotAllowedError

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)


def is_allowed_address(address: Any) -> bool:
    """Return True only for a private IPv4 literal, optionally followed by ``:port``."""
    if not isinstance(address, str) or not address or address != address.strip():
        return False

    host, sep, port = address.partition(":")
    if sep:
        if not (port.isascii() and port.isdigit()) or not 1 <= int(port) <= 65535:
            return False

    try:
        ip = ipaddress.IPv4Address(host)
    except ValueError:
        return False

    return any(ip in network for network in PRIVATE_NETWORKS)


def ensure_allowed_address(address: Any) -> str:
    """Return the address unchanged or raise ``AddressNotAllowedError``."""
    if not is_allowed_address(address):
        raise AddressNotAllowedError(
            f"Invalid device address {address!r}. Only private LAN addresses are allowed.",
            address if isinstance(address, str) else None,
        )
    return address
