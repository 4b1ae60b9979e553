"""Speed test deduplication: emit a measurement only once per timestamp."""

from __future__ import annotations

import asyncio
import logging
from datetime import tzinfo

from firewalla_ha_sync.devices.entities import speedtest_entities
from firewalla_ha_sync.devices.normalizer import format_timestamp
from firewalla_ha_sync.devices.reconciler import EntitySink
from firewalla_ha_sync.models import Measurement

logger = logging.getLogger(__name__)


class SpeedtestDeduplicator:
    """Pushes upload/download sensors when a new measurement appears.

    The timestamp of the last successfully emitted measurement is kept for
    the lifetime of the process. A failed emission leaves it untouched so
    the next cycle retries the same measurement.
    """

    def __init__(self, sink: EntitySink, tz: tzinfo | None = None) -> None:
        self._sink = sink
        self._tz = tz
        self._last_emitted: float | None = None

    @property
    def last_emitted_timestamp(self) -> float | None:
        return self._last_emitted

    async def maybe_emit(self, measurement: Measurement | None) -> bool:
        """Emit the measurement unless it was already emitted. Returns True if emitted."""
        if measurement is None or measurement.timestamp == self._last_emitted:
            return False

        upload = round(measurement.upload_mbps, 2)
        download = round(measurement.download_mbps, 2)
        timestamp = format_timestamp(measurement.timestamp, self._tz)
        entities = speedtest_entities(upload, download, timestamp)

        results = await asyncio.gather(
            *(self._sink.upsert_entity(entity_id, state, attrs) for entity_id, state, attrs in entities),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for failure in failures:
                logger.error("Failed to publish speed test: %s", failure)
            return False

        self._last_emitted = measurement.timestamp
        logger.info(
            "speedTest %s Mbit/s up, %s Mbit/s down (timestamp %s)",
            upload,
            download,
            timestamp,
        )
        return True
