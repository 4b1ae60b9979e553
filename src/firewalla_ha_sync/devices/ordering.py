"""Display ordering of canonical device records by IPv4 address."""

from __future__ import annotations

import ipaddress
from typing import Iterable

from firewalla_ha_sync.models import DeviceRecord


def ip_sort_key(ip: str | None) -> tuple[int, tuple[int, ...]]:
    """Return a sort key comparing the four octets numerically.

    Anything that is not a dotted-quad IPv4 address (including the
    unresolved sentinel) gets a key that sorts after every valid address.
    """
    if not ip:
        return (1, ())
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return (1, ())
    return (0, tuple(addr.packed))


def sort_devices(devices: Iterable[DeviceRecord]) -> list[DeviceRecord]:
    """Order devices by IP. Unresolved entries keep their relative order."""
    return sorted(devices, key=lambda d: ip_sort_key(d.ip))
