"""Home Assistant sensor payloads for devices and speed tests."""

from __future__ import annotations

from typing import Any, Literal

from firewalla_ha_sync.models import AllocationType, DeviceRecord

AllocationEncoding = Literal["full", "short"]
Attributes = dict[str, Any]

UNKNOWN_STATE = "unknown"
SPEEDTEST_UPLOAD_ID = "speedtest_upload"
SPEEDTEST_DOWNLOAD_ID = "speedtest_download"

_SHORT_CODES = {
    AllocationType.DYNAMIC: "d",
    AllocationType.STATIC: "s",
}


def encode_allocation(kind: AllocationType, encoding: AllocationEncoding = "full") -> str:
    """Encode the allocation type as ``dynamic``/``static`` or ``d``/``s``."""
    if encoding == "short":
        return _SHORT_CODES[kind]
    return kind.value


def device_entity(
    device: DeviceRecord,
    encoding: AllocationEncoding = "full",
) -> tuple[str, Attributes]:
    """Build the (state, attributes) pair for a device sensor.

    The state is the last-active timestamp. Attributes whose value is
    unknown are left out.
    """
    attributes: Attributes = {
        "device_class": "timestamp",
        "icon": "mdi:ip-network",
        "friendly_name": device.display_name,
        "ip": device.ip,
        "MAC": device.mac,
        "vendor": device.vendor,
        "found": device.first_found_at,
        "DHCP": encode_allocation(device.allocation_type, encoding),
    }
    state = device.last_active_at or UNKNOWN_STATE
    return state, {k: v for k, v in attributes.items() if v is not None}


def speedtest_entities(
    upload_mbps: float,
    download_mbps: float,
    timestamp: str | None,
) -> list[tuple[str, float, Attributes]]:
    """Build the upload and download sensor payloads for one measurement."""

    def _attributes(direction: str) -> Attributes:
        attributes: Attributes = {
            "icon": "mdi:speedometer",
            "device_class": "data_rate",
            "state_class": "measurement",
            "friendly_name": f"SpeedTest {direction}",
            "unit_of_measurement": "Mbit/s",
        }
        if timestamp is not None:
            attributes["timestamp"] = timestamp
        return attributes

    return [
        (SPEEDTEST_UPLOAD_ID, upload_mbps, _attributes("Upload")),
        (SPEEDTEST_DOWNLOAD_ID, download_mbps, _attributes("Download")),
    ]
