"""Home Assistant client used as the entity sink.

Reads and writes go through the Supervisor's Core proxy with the
Supervisor token. The proxy does not expose DELETE for states, so deletes
go straight to Home Assistant Core with a long-lived access token. The
Core URL is discovered once at startup (see ``resolve_delete_base_url``).
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from firewalla_ha_sync.errors import SinkWriteError, TransientNetworkError

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0  # seconds

SUPERVISOR_CORE_URL = "http://supervisor/core"
SUPERVISOR_INFO_URL = "http://supervisor/homeassistant/info"
DEFAULT_CORE_URL = "http://homeassistant:8123"
SENSOR_DOMAIN = "sensor."


def _is_supervisor_proxy(url: str) -> bool:
    return "supervisor/core" in url


async def resolve_delete_base_url(
    configured_url: str,
    supervisor_token: str,
    timeout: float = _TIMEOUT,
) -> str:
    """Determine the Home Assistant Core base URL to use for DELETE calls.

    Preference order:
    1. The configured URL, if it is not the Supervisor Core proxy.
    2. ``ip_address``/``port`` reported by the Supervisor's info endpoint.
    3. ``http://homeassistant:8123``.

    Never raises: discovery failures fall through to the default.
    """
    if configured_url and not _is_supervisor_proxy(configured_url):
        logger.debug("Using configured HA URL for deletes: %s", configured_url)
        return configured_url.rstrip("/")

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(
                SUPERVISOR_INFO_URL,
                headers={"Authorization": f"Bearer {supervisor_token}"},
            )
        if resp.is_success:
            data = resp.json().get("data") or {}
            ip = data.get("ip_address") or "homeassistant"
            port = data.get("port") or 8123
            url = f"http://{ip}:{port}"
            logger.debug("Using Home Assistant Core URL for deletes from supervisor info: %s", url)
            return url
        logger.warning(
            "Failed to fetch Home Assistant info from supervisor: %s %s",
            resp.status_code,
            resp.reason_phrase,
        )
    except (httpx.HTTPError, ValueError, AttributeError):
        logger.warning("Error while fetching Home Assistant info from supervisor", exc_info=True)

    logger.info("Falling back to default Home Assistant Core URL for deletes: %s", DEFAULT_CORE_URL)
    return DEFAULT_CORE_URL


class HomeAssistantClient:
    """Async REST client for Home Assistant sensor states.

    Parameters
    ----------
    url:
        Base URL for reads and writes (usually the Supervisor Core proxy).
    token:
        Bearer token for ``url``.
    delete_url:
        Base URL of Home Assistant Core for deletes. Defaults to ``url``.
    delete_token:
        Long-lived access token for deletes. Defaults to ``token``.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        token: str,
        delete_url: str | None = None,
        delete_token: str | None = None,
        timeout: float = _TIMEOUT,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._delete_url = (delete_url or url).rstrip("/")
        self._delete_headers = {"Authorization": f"Bearer {delete_token or token}"}
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def delete_url(self) -> str:
        return self._delete_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_entities(self, id_prefix: str) -> list[str]:
        """Return ids (without the ``sensor.`` domain) of sensors matching the prefix.

        Raises
        ------
        TransientNetworkError:
            If Home Assistant is unreachable or answers non-2xx.
        """
        try:
            resp = await self._client.get(f"{self._base_url}/api/states", headers=self._headers)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Home Assistant unreachable: {exc}") from exc
        if not resp.is_success:
            raise TransientNetworkError(
                f"Failed to fetch Home Assistant states: {resp.status_code} {resp.reason_phrase}"
            )
        try:
            states = resp.json()
        except ValueError as exc:
            raise TransientNetworkError("Home Assistant returned invalid JSON") from exc

        wanted = SENSOR_DOMAIN + id_prefix
        return [
            s["entity_id"][len(SENSOR_DOMAIN):]
            for s in states
            if isinstance(s, dict) and str(s.get("entity_id", "")).startswith(wanted)
        ]

    async def upsert_entity(self, entity_id: str, state: Any, attributes: dict[str, Any]) -> None:
        """Create or overwrite ``sensor.<entity_id>``.

        Raises
        ------
        SinkWriteError:
            If the request fails or is rejected.
        """
        try:
            resp = await self._client.post(
                f"{self._base_url}/api/states/{SENSOR_DOMAIN}{entity_id}",
                json={"state": state, "attributes": attributes},
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise SinkWriteError(entity_id, f"update failed: {exc}") from exc
        if not resp.is_success:
            raise SinkWriteError(entity_id, f"update rejected: {resp.status_code} {resp.reason_phrase}")

    async def delete_entity(self, entity_id: str) -> None:
        """Delete ``sensor.<entity_id>``. A missing entity counts as deleted.

        Raises
        ------
        SinkWriteError:
            If the request fails or is rejected.
        """
        try:
            resp = await self._client.delete(
                f"{self._delete_url}/api/states/{SENSOR_DOMAIN}{quote(entity_id, safe='')}",
                headers=self._delete_headers,
            )
        except httpx.HTTPError as exc:
            raise SinkWriteError(entity_id, f"delete failed: {exc}") from exc
        if resp.status_code == 404:
            logger.debug("Entity %s already absent", entity_id)
            return
        if not resp.is_success:
            raise SinkWriteError(entity_id, f"delete rejected: {resp.status_code} {resp.reason_phrase}")
