"""Firewalla discovery client: connected hosts and speed test results."""

from __future__ import annotations

import logging
import math
from typing import Any

import httpx

from firewalla_ha_sync.errors import AuthenticationError, TransientNetworkError
from firewalla_ha_sync.models import Measurement

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0  # seconds


def parse_speedtest(raw: Any) -> Measurement | None:
    """Parse the latest speed test out of a results payload.

    Expects ``{"results": [{"timestamp": ..., "result": {"upload": ...,
    "download": ...}}, ...]}`` with the newest result first. Returns
    ``None`` when there is no usable result.
    """
    results = raw.get("results") if isinstance(raw, dict) else None
    if not results:
        return None
    if not isinstance(results, list):
        logger.warning("Ignoring speed test results of unexpected shape: %r", results)
        return None
    latest = results[0]
    try:
        measurement = Measurement(
            timestamp=float(latest["timestamp"]),
            upload_mbps=float(latest["result"]["upload"]),
            download_mbps=float(latest["result"]["download"]),
        )
        values = (measurement.timestamp, measurement.upload_mbps, measurement.download_mbps)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("non-finite value")
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed speed test result: %r", latest)
        return None
    return measurement


class FirewallaClient:
    """Async client for the Firewalla box API.

    Parameters
    ----------
    url:
        Base URL of the box API (e.g. ``http://192.168.1.1:8833``).
    token:
        Bearer token accepted by the box.
    hosts_path:
        Path of the connected hosts endpoint.
    speedtest_path:
        Path of the speed test results endpoint.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        token: str,
        hosts_path: str = "/v1/host/all",
        speedtest_path: str = "/v1/network/speedtest",
        timeout: float = _TIMEOUT,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._hosts_path = hosts_path
        self._speedtest_path = speedtest_path
        self._client = httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        try:
            resp = await self._client.get(f"{self._base_url}{path}", headers=self._headers)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Firewalla unreachable: {exc}") from exc
        if resp.status_code in (401, 403):
            raise AuthenticationError(f"Firewalla rejected credentials ({resp.status_code})")
        if not resp.is_success:
            raise TransientNetworkError(f"Firewalla {path} returned {resp.status_code} {resp.reason_phrase}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientNetworkError(f"Firewalla {path} returned invalid JSON") from exc

    async def list_hosts(self) -> list[dict[str, Any]]:
        """Return the raw host entries currently known to the box.

        Raises
        ------
        AuthenticationError:
            If the box rejects the token.
        TransientNetworkError:
            If the box is unreachable or answers with an error.
        """
        data = await self._get_json(self._hosts_path)
        hosts = data.get("hosts") if isinstance(data, dict) else data
        if not isinstance(hosts, list):
            raise TransientNetworkError("Firewalla host list has an unexpected shape")
        return hosts

    async def get_latest_speedtest(self) -> Measurement | None:
        """Return the newest speed test result, or ``None`` if there is none."""
        data = await self._get_json(self._speedtest_path)
        return parse_speedtest(data)
