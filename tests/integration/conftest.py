from datetime import timezone
from unittest.mock import AsyncMock

import pytest

from firewalla_ha_sync.devices.normalizer import NormalizerOptions


HOSTS = [
    {
        "mac": "AA:BB:CC:00:00:0A",
        "ip": "192.168.1.20",
        "name": "laptop",
        "lastActive": 1700000000,
        "firstFound": 1690000000,
    },
    {
        "mac": "AA:BB:CC:00:00:0B",
        "ip": "192.168.1.3",
        "dhcpName": "printer",
        "lastActive": 1700000100,
        "policy": {"ipAllocation": {"allocations": {"n": {"type": "static", "ipv4": "192.168.1.3"}}}},
    },
    {"ip": "192.168.1.9", "name": "no-mac-tv"},
]


@pytest.fixture
def options() -> NormalizerOptions:
    return NormalizerOptions(tz=timezone.utc)


@pytest.fixture
def discovery() -> AsyncMock:
    """Discovery source returning a fixed snapshot and no speed test."""
    source = AsyncMock()
    source.list_hosts = AsyncMock(return_value=[dict(h) for h in HOSTS])
    source.get_latest_speedtest = AsyncMock(return_value=None)
    return source
