"""Signal extractors for device fingerprinting.

A device is identified across cycles by its MAC address alone. These
helpers normalize the MAC and derive the stable entity id from it.
"""

from __future__ import annotations

import re

DEFAULT_DEVICE_PREFIX = "network_device_"

_SEPARATORS = re.compile(r"[\s:.\-]")
_FINGERPRINT_LENGTH = 6


def normalize_mac(mac: str | None) -> str | None:
    """Normalize a MAC address to lowercase hex with no separators.

    Accepts colon, dash, dot (Cisco) or no-separator formats.

    Parameters
    ----------
    mac:
        Raw MAC address string, or ``None``.

    Returns
    -------
    str | None:
        Normalized MAC such as ``aabbcc112233``, or ``None`` if the input
        is absent or contains nothing but separators.
    """
    if mac is None:
        return None
    flat = _SEPARATORS.sub("", mac).lower()
    return flat or None


def device_id_from_mac(mac: str | None, prefix: str = DEFAULT_DEVICE_PREFIX) -> str | None:
    """Derive the stable device id from a MAC address.

    The id is ``prefix`` followed by the last six hex characters of the
    normalized MAC, so the same hardware always maps to the same entity.

    Parameters
    ----------
    mac:
        Raw or normalized MAC address, or ``None``.
    prefix:
        Constant id prefix.

    Returns
    -------
    str | None:
        The device id, or ``None`` when there is no MAC.
    """
    normalized = normalize_mac(mac)
    if normalized is None:
        return None
    return f"{prefix}{normalized[-_FINGERPRINT_LENGTH:]}"
