"""Shared test fixtures for Firewalla HA Sync tests."""

from __future__ import annotations

from typing import Any

import pytest

from firewalla_ha_sync.errors import SinkWriteError


class FakeSink:
    """In-memory entity sink that records every call.

    Ids listed in ``fail_upsert`` / ``fail_delete`` raise ``SinkWriteError``;
    setting ``list_error`` makes ``list_entities`` raise it.
    """

    def __init__(self, entities: dict[str, tuple[Any, dict[str, Any]]] | None = None) -> None:
        self.entities: dict[str, tuple[Any, dict[str, Any]]] = dict(entities or {})
        self.upserts: list[str] = []
        self.deletes: list[str] = []
        self.fail_upsert: set[str] = set()
        self.fail_delete: set[str] = set()
        self.list_error: Exception | None = None

    async def list_entities(self, id_prefix: str) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        return [i for i in self.entities if i.startswith(id_prefix)]

    async def upsert_entity(self, entity_id: str, state: Any, attributes: dict[str, Any]) -> None:
        self.upserts.append(entity_id)
        if entity_id in self.fail_upsert:
            raise SinkWriteError(entity_id, "update rejected: 500")
        self.entities[entity_id] = (state, attributes)

    async def delete_entity(self, entity_id: str) -> None:
        self.deletes.append(entity_id)
        if entity_id in self.fail_delete:
            raise SinkWriteError(entity_id, "delete rejected: 500")
        self.entities.pop(entity_id, None)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()
