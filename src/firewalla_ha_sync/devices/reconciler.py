"""Reconciliation engine: sync canonical devices into the entity sink.

Each cycle:
1. Build the keep-set from the ids of the current devices
2. Classify ids as new / seen (vs. the registry) and collect stale ids
   from both the registry and the sink's own listing
3. Upsert every keyed device (concurrently, joined before continuing)
4. Delete every stale id (concurrently, joined before continuing)
5. Update the registry only for calls the sink confirmed

Devices without an id (no MAC) are kept in the ordered list for display
but are never written to the sink or tracked in the registry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Protocol, Sequence

from firewalla_ha_sync.devices.entities import AllocationEncoding, device_entity
from firewalla_ha_sync.devices.registry import DeviceRegistry
from firewalla_ha_sync.errors import SyncError, TransientNetworkError
from firewalla_ha_sync.fingerprint.signals import DEFAULT_DEVICE_PREFIX
from firewalla_ha_sync.models import DeviceRecord

logger = logging.getLogger(__name__)


class EntitySink(Protocol):
    async def list_entities(self, id_prefix: str) -> list[str]: ...

    async def upsert_entity(self, entity_id: str, state: Any, attributes: dict[str, Any]) -> None: ...

    async def delete_entity(self, entity_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconcilePlan:
    """What a reconcile pass would do, without doing it."""

    new: list[str] = field(default_factory=list)
    seen: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    unkeyed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "new": list(self.new),
            "seen": list(self.seen),
            "stale": list(self.stale),
            "unkeyed": self.unkeyed,
        }


@dataclass(frozen=True)
class ReconcileResult:
    """Counters from one reconcile pass, used for logging."""

    new: int = 0
    seen: int = 0
    stale: int = 0
    deleted: int = 0
    failed: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class Reconciler:
    """Diffs current devices against the registry and the sink.

    Parameters
    ----------
    sink:
        Entity store receiving upserts and deletes.
    registry:
        Registry of devices synchronized so far. A fresh one is created
        when not provided.
    id_prefix:
        Device id prefix, used to enumerate the sink's device entities.
    allocation_encoding:
        ``"full"`` or ``"short"`` encoding of the allocation attribute.
    """

    def __init__(
        self,
        sink: EntitySink,
        registry: DeviceRegistry | None = None,
        id_prefix: str = DEFAULT_DEVICE_PREFIX,
        allocation_encoding: AllocationEncoding = "full",
    ) -> None:
        self._sink = sink
        self._registry = registry if registry is not None else DeviceRegistry()
        self._id_prefix = id_prefix
        self._encoding: AllocationEncoding = allocation_encoding

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    async def plan(self, devices: Sequence[DeviceRecord]) -> ReconcilePlan:
        """Classify devices and collect stale ids without writing anything."""
        keyed = _keyed(devices)
        known = self._registry.ids()
        listed = await self._list_sink_ids()
        stale = [i for i in self._registry if i not in keyed]
        stale += sorted(i for i in listed if i not in keyed and i not in known)
        return ReconcilePlan(
            new=[i for i in keyed if i not in known],
            seen=[i for i in keyed if i in known],
            stale=stale,
            unkeyed=len(devices) - sum(1 for d in devices if d.id is not None),
        )

    async def reconcile(self, devices: Sequence[DeviceRecord]) -> ReconcileResult:
        """Upsert live devices, delete stale ones, and update the registry."""
        keyed = _keyed(devices)
        plan = await self.plan(devices)
        if plan.unkeyed:
            logger.debug("Skipping %d devices without a MAC address", plan.unkeyed)

        new_ids = set(plan.new)
        upsert_ids = list(keyed)
        upsert_ok = await _join(
            upsert_ids,
            [self._upsert(i, keyed[i]) for i in upsert_ids],
            "update",
        )
        for device_id, ok in zip(upsert_ids, upsert_ok):
            if not ok:
                continue
            name = keyed[device_id].display_name
            if device_id in new_ids:
                logger.info("Found device %s", name or "Unknown")
            self._registry.remember(device_id, name)

        delete_ok = await _join(
            plan.stale,
            [self._sink.delete_entity(i) for i in plan.stale],
            "delete",
        )
        deleted = 0
        for device_id, ok in zip(plan.stale, delete_ok):
            if not ok:
                continue
            deleted += 1
            name = self._registry.forget(device_id)
            logger.info("Removed device %s", name or device_id)

        if plan.new:
            logger.info("%d devices", len(devices))

        return ReconcileResult(
            new=sum(1 for i in plan.new if i in self._registry),
            seen=len(plan.seen),
            stale=len(plan.stale),
            deleted=deleted,
            failed=upsert_ok.count(False) + delete_ok.count(False),
            total=len(devices),
        )

    async def _upsert(self, device_id: str, device: DeviceRecord) -> None:
        state, attributes = device_entity(device, self._encoding)
        await self._sink.upsert_entity(device_id, state, attributes)

    async def _list_sink_ids(self) -> set[str]:
        try:
            listed = await self._sink.list_entities(self._id_prefix)
        except TransientNetworkError as exc:
            logger.warning("Could not list existing device entities: %s", exc)
            return set()
        return {i for i in listed if i.startswith(self._id_prefix)}


def _keyed(devices: Sequence[DeviceRecord]) -> dict[str, DeviceRecord]:
    """Index devices by id, keeping the first device for duplicate ids."""
    keyed: dict[str, DeviceRecord] = {}
    for device in devices:
        if device.id is None:
            continue
        if device.id in keyed:
            logger.debug("Duplicate device id %s (ip %s) ignored", device.id, device.ip)
            continue
        keyed[device.id] = device
    return keyed


async def _join(ids: Sequence[str], calls: Sequence[Awaitable[None]], action: str) -> list[bool]:
    """Await per-id sink calls together and report which ones succeeded.

    Failures are logged per id and never abort sibling calls.
    """
    results = await asyncio.gather(*calls, return_exceptions=True)
    outcome: list[bool] = []
    for entity_id, result in zip(ids, results):
        if isinstance(result, SyncError):
            logger.warning("Failed to %s %s: %s", action, entity_id, result)
            outcome.append(False)
        elif isinstance(result, Exception):
            logger.error("Failed to %s %s", action, entity_id, exc_info=result)
            outcome.append(False)
        elif isinstance(result, BaseException):
            raise result
        else:
            outcome.append(True)
    return outcome
