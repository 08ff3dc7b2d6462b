"""Helpers for turning registry interface data into mesh descriptors."""

from __future__ import annotations

import ipaddress
from typing import Callable

_WIRED_MARKERS = ("lan", "wan", "other", "eth")
_WIRELESS_MARKERS = ("wifi", "radio")
_TUNNEL_MARKERS = ("tunnel", "public")


def netmask_to_prefix_len(netmask: str) -> int:
    """Convert a dotted netmask to a prefix length; invalid masks give 32."""
    try:
        return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen
    except ValueError:
        return 32


def classify_interface(name: str, ip: str, is_vpn_address: Callable[[str], bool]) -> str | None:
    """Guess the medium of a registry interface from its name and address."""
    if any(m in name for m in _WIRED_MARKERS):
        return "wired"
    if any(m in name for m in _WIRELESS_MARKERS):
        return "wireless"
    if any(m in name for m in _TUNNEL_MARKERS) or is_vpn_address(ip):
        return "tunnel"
    return None
