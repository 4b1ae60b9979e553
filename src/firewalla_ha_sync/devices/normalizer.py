"""Host normalizer: raw discovery snapshot -> canonical device records.

Rules applied to each host, in order:
1. ip: direct IP, else the first allocation's ipv4, else the sentinel
2. mac: lowercase with separators stripped
3. display name: name, else dhcpName, else localDomain
4. drop the host if it has neither a resolved ip nor a display name
5. id: prefix + last six hex chars of the MAC
6. timestamps: floored epoch formatted as ``YYYY-MM-DDTHH:mm:ss``
7. allocation type from the first allocation entry, default dynamic
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Iterable

from firewalla_ha_sync.devices.ordering import sort_devices
from firewalla_ha_sync.errors import MalformedInputError
from firewalla_ha_sync.fingerprint.signals import DEFAULT_DEVICE_PREFIX, device_id_from_mac, normalize_mac
from firewalla_ha_sync.models import AllocationType, DeviceRecord, HostRecord, parse_host

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_UNRESOLVED_IP = "-"


@dataclass(frozen=True)
class NormalizerOptions:
    """Tunables for host normalization.

    Parameters
    ----------
    id_prefix:
        Prefix for derived device ids.
    unresolved_ip:
        Sentinel used when no IP can be resolved.
    tz:
        Timezone for formatted timestamps. ``None`` means local time.
    """

    id_prefix: str = DEFAULT_DEVICE_PREFIX
    unresolved_ip: str = DEFAULT_UNRESOLVED_IP
    tz: tzinfo | None = None


def format_timestamp(epoch: float | None, tz: tzinfo | None = None) -> str | None:
    """Format an epoch (seconds) as ``YYYY-MM-DDTHH:mm:ss``.

    Fractional seconds are floored. Absent, non-finite or out-of-range
    values (e.g. milliseconds passed as seconds) yield ``None`` instead of
    a bogus date.
    """
    if epoch is None or not math.isfinite(epoch):
        return None
    try:
        return datetime.fromtimestamp(math.floor(epoch), tz).strftime(TIMESTAMP_FORMAT)
    except (OverflowError, OSError, ValueError):
        logger.debug("Epoch %r is out of range", epoch)
        return None


def build_device(host: HostRecord, options: NormalizerOptions) -> DeviceRecord:
    """Build the canonical record for a validated host.

    Raises
    ------
    MalformedInputError:
        If the host has neither a resolvable IP nor a display name.
    """
    allocation = host.allocation
    resolved_ip = host.ip or (allocation.ipv4 if allocation else None)
    display_name = host.name or host.dhcp_name or host.local_domain

    if resolved_ip is None and display_name is None:
        raise MalformedInputError("host has no ip and no name")

    mac = normalize_mac(host.mac)
    return DeviceRecord(
        id=device_id_from_mac(mac, options.id_prefix),
        ip=resolved_ip or options.unresolved_ip,
        mac=mac,
        vendor=host.mac_vendor,
        display_name=display_name,
        last_active_at=format_timestamp(host.last_active, options.tz),
        first_found_at=format_timestamp(host.first_found, options.tz),
        allocation_type=allocation.kind if allocation else AllocationType.DYNAMIC,
    )


def normalize_host(raw: Any, options: NormalizerOptions | None = None) -> DeviceRecord | None:
    """Convert one raw host entry into a ``DeviceRecord``, or ``None`` to drop it."""
    try:
        return build_device(parse_host(raw), options or NormalizerOptions())
    except MalformedInputError:
        return None


def normalize_hosts(
    hosts: Iterable[Any],
    options: NormalizerOptions | None = None,
) -> list[DeviceRecord]:
    """Normalize a discovery snapshot and return it ordered by IP.

    Malformed hosts are dropped with a debug log. Any other failure is
    confined to its own host, which is dropped with a warning.
    """
    options = options or NormalizerOptions()
    devices: list[DeviceRecord] = []
    dropped = 0
    for raw in hosts:
        try:
            devices.append(build_device(parse_host(raw), options))
        except MalformedInputError as exc:
            dropped += 1
            logger.debug("Dropping host entry: %s", exc)
        except Exception:
            dropped += 1
            logger.warning("Dropping host entry that failed to normalize: %r", raw, exc_info=True)
    if dropped:
        logger.debug("Dropped %d of %d host entries", dropped, dropped + len(devices))
    return sort_devices(devices)
