"""Domain models for Firewalla HA Sync.

Raw host entries reported by the Firewalla box are loosely shaped, so they
are validated into a ``HostRecord`` at the boundary. Everything downstream
works with the canonical, immutable ``DeviceRecord`` and ``Measurement``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from firewalla_ha_sync.errors import MalformedInputError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AllocationType(str, Enum):
    DYNAMIC = "dynamic"
    STATIC = "static"


# ---------------------------------------------------------------------------
# Boundary models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Allocation:
    """The first IP allocation entry of a host's policy."""

    kind: AllocationType
    ipv4: str | None = None


def _first_allocation(policy: Any) -> Allocation | None:
    """Extract the first entry of ``policy.ipAllocation.allocations``.

    Allocations arrive either as a mapping (keyed by network id) or as a
    list. Only the first entry in insertion order is considered.
    """
    if not isinstance(policy, Mapping):
        return None
    ip_allocation = policy.get("ipAllocation")
    if not isinstance(ip_allocation, Mapping):
        return None
    allocations = ip_allocation.get("allocations")
    if isinstance(allocations, Mapping):
        entries = list(allocations.values())
    elif isinstance(allocations, list):
        entries = allocations
    else:
        return None
    if not entries or not isinstance(entries[0], Mapping):
        return None

    first = entries[0]
    raw_type = first.get("type")
    kind = AllocationType.STATIC if raw_type == AllocationType.STATIC.value else AllocationType.DYNAMIC
    ipv4 = first.get("ipv4")
    return Allocation(kind=kind, ipv4=ipv4 if isinstance(ipv4, str) and ipv4 else None)


class HostRecord(BaseModel):
    """A host entry as reported by the discovery source.

    Unknown keys are ignored. String fields of the wrong type and
    non-numeric epochs are treated as absent rather than rejected.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    ip: str | None = None
    mac: str | None = None
    name: str | None = None
    dhcp_name: str | None = Field(default=None, alias="dhcpName")
    local_domain: str | None = Field(default=None, alias="localDomain")
    mac_vendor: str | None = Field(default=None, alias="macVendor")
    last_active: float | None = Field(default=None, alias="lastActive")
    first_found: float | None = Field(default=None, alias="firstFound")
    allocation: Allocation | None = None

    @model_validator(mode="before")
    @classmethod
    def _extract_allocation(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "allocation" not in data:
            data = dict(data)
            data["allocation"] = _first_allocation(data.get("policy"))
        return data

    @field_validator("ip", "mac", "name", "dhcp_name", "local_domain", "mac_vendor", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    @field_validator("last_active", "first_found", mode="before")
    @classmethod
    def _coerce_epoch(cls, value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            epoch = float(value)
        except (TypeError, ValueError):
            return None
        return epoch if math.isfinite(epoch) else None


def parse_host(raw: Any) -> HostRecord:
    """Validate one raw host entry.

    Raises
    ------
    MalformedInputError:
        If the entry is not a mapping or fails validation.
    """
    if not isinstance(raw, Mapping):
        raise MalformedInputError(f"host entry is not a mapping: {type(raw).__name__}")
    try:
        return HostRecord.model_validate(raw)
    except ValidationError as exc:
        raise MalformedInputError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceRecord:
    """Canonical, orderable and diffable representation of a host."""

    id: str | None
    ip: str
    mac: str | None = None
    vendor: str | None = None
    display_name: str | None = None
    last_active_at: str | None = None
    first_found_at: str | None = None
    allocation_type: AllocationType = AllocationType.DYNAMIC

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["allocation_type"] = self.allocation_type.value
        return data


@dataclass(frozen=True)
class Measurement:
    """A single speed test result from the discovery source."""

    timestamp: float
    upload_mbps: float
    download_mbps: float
