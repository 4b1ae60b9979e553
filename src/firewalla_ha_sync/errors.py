"""Exception hierarchy for the sync pipeline.

Collaborators translate transport failures into these types so the
scheduler can decide how far an error propagates:

- ``AuthenticationError`` abandons the whole cycle.
- ``TransientNetworkError`` abandons the current stage only.
- ``SinkWriteError`` is contained to a single entity.
- ``MalformedInputError`` drops a single host record.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync pipeline errors."""


class TransientNetworkError(SyncError):
    """Discovery source or sink was unreachable or answered non-2xx."""


class AuthenticationError(SyncError):
    """The discovery source rejected our credentials."""


class MalformedInputError(SyncError):
    """A raw host record could not be validated."""


class SinkWriteError(SyncError):
    """A single upsert or delete against the sink failed.

    Parameters
    ----------
    entity_id:
        The entity the failed call targeted.
    """

    def __init__(self, entity_id: str, message: str) -> None:
        super().__init__(f"{entity_id}: {message}")
        self.entity_id = entity_id
