"""Periodic sync loop that drives the reconciliation pipeline.

Cycle stages:
  Stage 1: fetch hosts -> normalize + order -> reconcile into the sink
  Stage 2: fetch the latest speed test -> deduplicated emission

A transient failure abandons only its own stage; an authentication
failure abandons the whole cycle. Nothing escapes the loop.

Cycles start immediately and then on a fixed-rate timer. At most one
cycle runs at a time: a tick that fires while a cycle is still running
is dropped rather than queued.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from firewalla_ha_sync.devices.normalizer import NormalizerOptions, normalize_hosts
from firewalla_ha_sync.devices.reconciler import ReconcileResult, Reconciler
from firewalla_ha_sync.errors import AuthenticationError, TransientNetworkError
from firewalla_ha_sync.models import DeviceRecord, Measurement
from firewalla_ha_sync.speedtest import SpeedtestDeduplicator

logger = logging.getLogger(__name__)


class DiscoverySource(Protocol):
    async def list_hosts(self) -> list[dict[str, Any]]: ...

    async def get_latest_speedtest(self) -> Measurement | None: ...


@dataclass(frozen=True)
class CycleReport:
    """Outcome of a single sync cycle."""

    devices: list[DeviceRecord] = field(default_factory=list)
    result: ReconcileResult | None = None
    speedtest_emitted: bool = False
    aborted: bool = False


class SyncLoop:
    """Owns the pipeline state and runs sync cycles on a timer.

    Parameters
    ----------
    discovery:
        Source of host snapshots and speed test results.
    reconciler:
        Reconciler holding the device registry.
    speedtest:
        Speed test deduplicator holding the last emitted timestamp.
    normalizer_options:
        Options for host normalization.
    interval:
        Seconds between cycle starts.
    """

    def __init__(
        self,
        discovery: DiscoverySource,
        reconciler: Reconciler,
        speedtest: SpeedtestDeduplicator,
        normalizer_options: NormalizerOptions | None = None,
        interval: float = 60,
    ) -> None:
        self._discovery = discovery
        self._reconciler = reconciler
        self._speedtest = speedtest
        self._options = normalizer_options or NormalizerOptions()
        self._interval = interval
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        """Return the configured interval in seconds."""
        return self._interval

    @property
    def is_running(self) -> bool:
        """Whether a cycle is currently in flight."""
        return self._lock.locked()

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run cycles until the shutdown event is set."""
        loop = asyncio.get_running_loop()
        logger.info("Sync loop started: interval=%ss", self._interval)

        next_tick = loop.time()
        while not shutdown_event.is_set():
            await self.tick()

            next_tick += self._interval
            now = loop.time()
            if now >= next_tick:
                missed = int((now - next_tick) // self._interval) + 1
                logger.warning("Sync cycle overran the interval, skipping %d tick(s)", missed)
                next_tick += missed * self._interval

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                pass

        logger.info("Sync loop stopped")

    async def tick(self) -> bool:
        """Start a cycle unless one is already running. Returns True if it ran."""
        if self._lock.locked():
            logger.debug("Previous sync cycle still running, dropping tick")
            return False
        async with self._lock:
            try:
                await self.run_single_cycle()
            except Exception:
                logger.exception("Sync cycle failed")
        return True

    async def run_single_cycle(self) -> CycleReport:
        """Run one fetch -> normalize -> reconcile -> speed test cycle."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        logger.debug("Starting sync cycle")

        # ---- Stage 1: hosts ----
        devices: list[DeviceRecord] = []
        result: ReconcileResult | None = None
        try:
            hosts = await self._discovery.list_hosts()
        except AuthenticationError as exc:
            logger.error("Discovery rejected credentials, abandoning cycle: %s", exc)
            return CycleReport(aborted=True)
        except TransientNetworkError as exc:
            logger.warning("Host discovery failed, skipping device sync: %s", exc)
        else:
            devices = normalize_hosts(hosts, self._options)
            result = await self._reconciler.reconcile(devices)
            logger.debug(
                "Reconciled %d devices: %d new, %d stale, %d deleted, %d failed",
                result.total,
                result.new,
                result.stale,
                result.deleted,
                result.failed,
            )

        # ---- Stage 2: speed test ----
        emitted = False
        try:
            measurement = await self._discovery.get_latest_speedtest()
        except AuthenticationError as exc:
            logger.error("Discovery rejected credentials, abandoning cycle: %s", exc)
            return CycleReport(devices=devices, result=result, aborted=True)
        except TransientNetworkError as exc:
            logger.warning("Speed test fetch failed: %s", exc)
        else:
            emitted = await self._speedtest.maybe_emit(measurement)

        logger.debug("Sync cycle complete in %dms", int((loop.time() - start) * 1000))
        return CycleReport(devices=devices, result=result, speedtest_emitted=emitted)

    async def dry_run(self) -> dict[str, Any]:
        """Fetch and plan one cycle without writing to the sink.

        Returns the ordered canonical device list and the reconcile plan.
        Discovery errors propagate to the caller.
        """
        hosts = await self._discovery.list_hosts()
        devices = normalize_hosts(hosts, self._options)
        plan = await self._reconciler.plan(devices)
        return {
            "devices": [d.to_dict() for d in devices],
            "plan": plan.to_dict(),
        }
