"""Tombstone tracking for local deletions.

A tombstone is written whenever an entity that the server may know about
is deleted locally.  Tombstones travel in ``deletedItems`` of the next
request and are removed in two steps once the server accepted it:

1. ``acknowledge(ids)`` marks exactly the tombstones that were sent.
2. ``purge()`` deletes every acknowledged row.

A crash between the two steps leaves acknowledged rows behind; the next
``purge()`` removes them.  Acknowledgment is never undone.
"""

from __future__ import annotations

import logging

from grocery_sync.models import (
    EntityKind,
    SyncableEntity,
    SyncStatus,
    Tombstone,
    utcnow,
)
from grocery_sync.store.base import TombstoneStore

logger = logging.getLogger(__name__)


class TombstoneTracker:
    """Record, list, acknowledge and purge tombstones.

    Args:
        tombstones: The tombstone collection of the local store.
    """

    def __init__(self, tombstones: TombstoneStore) -> None:
        self._tombstones = tombstones

    @staticmethod
    def needs_tombstone(entity: SyncableEntity) -> bool:
        """Return ``True`` if deleting *entity* must be told to the server.

        Entities without a stable id, and entities that were created
        offline and never accepted by the server, produce no tombstone.
        """
        if not entity.sync_id:
            return False
        if (
            entity.sync_status == SyncStatus.LOCAL_ONLY
            and entity.server_id is None
        ):
            return False
        return True

    def record_deletion(
        self, entity: SyncableEntity, kind: EntityKind
    ) -> Tombstone | None:
        """Append a tombstone for *entity* if the server may know it.

        Returns:
            The stored tombstone, or ``None`` when none was needed.
        """
        if not self.needs_tombstone(entity):
            logger.debug(
                "No tombstone for never-synced %s (id=%s)",
                kind.value,
                entity.id,
            )
            return None

        tombstone = self._tombstones.insert(
            Tombstone(
                sync_id=entity.sync_id,
                original_id=entity.id,
                entity_type=kind,
                deleted_at=utcnow(),
            )
        )
        logger.debug(
            "Recorded tombstone %s for %s %s",
            tombstone.id,
            kind.value,
            entity.sync_id,
        )
        return tombstone

    def pending_tombstones(self) -> list[Tombstone]:
        """Return all tombstones not yet acknowledged by the server."""
        return self._tombstones.list_unacknowledged()

    def acknowledge(self, ids: list[int]) -> None:
        """Mark the tombstones with local keys *ids* as acknowledged."""
        ids = [i for i in ids if i is not None]
        if ids:
            self._tombstones.acknowledge(ids)
            logger.debug("Acknowledged %d tombstones", len(ids))

    def purge(self) -> int:
        """Delete acknowledged tombstones.  Safe to call repeatedly."""
        removed = self._tombstones.purge_acknowledged()
        if removed:
            logger.info("Purged %d acknowledged tombstones", removed)
        return removed
