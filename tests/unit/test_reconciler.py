"""Unit tests for the reconciliation engine."""

from __future__ import annotations

import pytest

from firewalla_ha_sync.devices.reconciler import ReconcilePlan, Reconciler
from firewalla_ha_sync.devices.registry import DeviceRegistry
from firewalla_ha_sync.errors import TransientNetworkError
from firewalla_ha_sync.models import DeviceRecord

A = "network_device_00000a"
B = "network_device_00000b"
C = "network_device_00000c"


def _dev(device_id: str | None, name: str | None = None, ip: str = "10.0.0.1") -> DeviceRecord:
    return DeviceRecord(
        id=device_id,
        ip=ip,
        display_name=name,
        last_active_at="2024-01-01T00:00:00",
    )


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry()


@pytest.fixture
def reconciler(sink, registry: DeviceRegistry) -> Reconciler:
    return Reconciler(sink=sink, registry=registry)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestDeviceRegistry:
    def test_starts_empty(self) -> None:
        assert len(DeviceRegistry()) == 0

    def test_remember_and_forget(self) -> None:
        registry = DeviceRegistry()
        registry.remember(A, "laptop")
        assert A in registry
        assert registry.name_of(A) == "laptop"
        assert registry.forget(A) == "laptop"
        assert A not in registry

    def test_forget_unknown(self) -> None:
        assert DeviceRegistry().forget(A) is None

    def test_snapshot_is_a_copy(self) -> None:
        registry = DeviceRegistry({A: "a"})
        snap = registry.snapshot()
        snap[B] = "b"
        assert registry.ids() == {A}


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------

class TestUpserts:
    @pytest.mark.asyncio
    async def test_new_devices_upserted_and_remembered(self, reconciler, sink, registry) -> None:
        result = await reconciler.reconcile([_dev(A, "a"), _dev(B, "b")])
        assert sorted(sink.upserts) == [A, B]
        assert registry.snapshot() == {A: "a", B: "b"}
        assert result.new == 2
        assert result.seen == 0
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_payload_uses_device_entity(self, reconciler, sink) -> None:
        await reconciler.reconcile([_dev(A, "laptop", ip="192.168.1.50")])
        state, attributes = sink.entities[A]
        assert state == "2024-01-01T00:00:00"
        assert attributes["friendly_name"] == "laptop"
        assert attributes["ip"] == "192.168.1.50"
        assert attributes["DHCP"] == "dynamic"

    @pytest.mark.asyncio
    async def test_short_allocation_encoding(self, sink) -> None:
        reconciler = Reconciler(sink=sink, allocation_encoding="short")
        await reconciler.reconcile([_dev(A)])
        assert sink.entities[A][1]["DHCP"] == "d"

    @pytest.mark.asyncio
    async def test_seen_devices_upserted_again(self, reconciler, sink, registry) -> None:
        registry.remember(A, "a")
        result = await reconciler.reconcile([_dev(A, "a")])
        assert sink.upserts == [A]
        assert result.new == 0
        assert result.seen == 1

    @pytest.mark.asyncio
    async def test_display_name_refreshed(self, reconciler, registry) -> None:
        registry.remember(A, "old")
        await reconciler.reconcile([_dev(A, "new")])
        assert registry.name_of(A) == "new"

    @pytest.mark.asyncio
    async def test_device_without_id_not_written(self, reconciler, sink, registry) -> None:
        result = await reconciler.reconcile([_dev(None, "no-mac"), _dev(A, "a")])
        assert sink.upserts == [A]
        assert registry.ids() == {A}
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_duplicate_ids_written_once(self, reconciler, sink, registry) -> None:
        await reconciler.reconcile([_dev(A, "first"), _dev(A, "second", ip="10.0.0.2")])
        assert sink.upserts == [A]
        assert registry.name_of(A) == "first"

    @pytest.mark.asyncio
    async def test_failed_upsert_leaves_registry_untouched(self, reconciler, sink, registry) -> None:
        sink.fail_upsert.add(A)
        result = await reconciler.reconcile([_dev(A, "a"), _dev(B, "b")])
        assert A not in registry
        assert B in registry
        assert result.failed == 1
        assert result.new == 1

    @pytest.mark.asyncio
    async def test_failed_upsert_of_seen_keeps_old_name(self, reconciler, sink, registry) -> None:
        registry.remember(A, "old")
        sink.fail_upsert.add(A)
        await reconciler.reconcile([_dev(A, "new")])
        assert registry.name_of(A) == "old"


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class TestCleanup:
    @pytest.mark.asyncio
    async def test_stale_device_deleted_once(self, sink) -> None:
        registry = DeviceRegistry({A: "a", B: "b", C: "c"})
        for device_id in (A, B, C):
            sink.entities[device_id] = ("2024-01-01T00:00:00", {})
        reconciler = Reconciler(sink=sink, registry=registry)

        result = await reconciler.reconcile([_dev(A, "a"), _dev(C, "c")])
        assert sink.deletes == [B]
        assert registry.ids() == {A, C}
        assert result.stale == 1
        assert result.deleted == 1

        await reconciler.reconcile([_dev(A, "a"), _dev(C, "c")])
        assert sink.deletes == [B]

    @pytest.mark.asyncio
    async def test_idempotent(self, reconciler, sink, registry) -> None:
        devices = [_dev(A, "a"), _dev(B, "b")]
        await reconciler.reconcile(devices)
        before = registry.snapshot()

        result = await reconciler.reconcile(devices)
        assert sink.deletes == []
        assert result.deleted == 0
        assert registry.snapshot() == before

    @pytest.mark.asyncio
    async def test_untracked_sink_entities_deleted(self, reconciler, sink, registry) -> None:
        sink.entities["network_device_old001"] = ("x", {})
        sink.entities["speedtest_upload"] = (1.0, {})
        await reconciler.reconcile([_dev(A, "a")])
        assert sink.deletes == ["network_device_old001"]
        assert "speedtest_upload" in sink.entities

    @pytest.mark.asyncio
    async def test_failed_delete_retried_next_cycle(self, reconciler, sink, registry) -> None:
        registry.remember(B, "b")
        sink.fail_delete.add(B)

        result = await reconciler.reconcile([_dev(A, "a")])
        assert B in registry
        assert result.failed == 1
        assert result.deleted == 0

        sink.fail_delete.clear()
        await reconciler.reconcile([_dev(A, "a")])
        assert sink.deletes == [B, B]
        assert B not in registry

    @pytest.mark.asyncio
    async def test_listing_failure_falls_back_to_registry(self, reconciler, sink, registry) -> None:
        registry.remember(B, "b")
        sink.entities["network_device_old001"] = ("x", {})
        sink.list_error = TransientNetworkError("Home Assistant unreachable")

        await reconciler.reconcile([_dev(A, "a")])
        assert sink.deletes == [B]
        assert A in registry

    @pytest.mark.asyncio
    async def test_empty_snapshot_removes_everything(self, reconciler, sink, registry) -> None:
        await reconciler.reconcile([_dev(A, "a"), _dev(B, "b")])
        result = await reconciler.reconcile([])
        assert sorted(sink.deletes) == [A, B]
        assert len(registry) == 0
        assert result.total == 0


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

class TestPlan:
    @pytest.mark.asyncio
    async def test_plan_classifies_without_writing(self, reconciler, sink, registry) -> None:
        registry.remember(A, "a")
        registry.remember(B, "b")
        sink.entities["network_device_old001"] = ("x", {})

        plan = await reconciler.plan([_dev(A, "a"), _dev(C, "c"), _dev(None, "tv")])
        assert plan == ReconcilePlan(
            new=[C],
            seen=[A],
            stale=[B, "network_device_old001"],
            unkeyed=1,
        )
        assert sink.upserts == []
        assert sink.deletes == []
        assert registry.ids() == {A, B}

    @pytest.mark.asyncio
    async def test_plan_to_dict(self, reconciler) -> None:
        plan = await reconciler.plan([_dev(A)])
        assert plan.to_dict() == {"new": [A], "seen": [], "stale": [], "unkeyed": 0}
