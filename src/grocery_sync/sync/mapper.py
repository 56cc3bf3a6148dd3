"""Local-to-wire mapping for outgoing sync payloads.

Selects every entity whose status is not ``SYNCED`` and converts it into
its wire record.  Two rules apply while mapping:

1. **Stable id backfill** -- an entity without ``sync_id`` receives a new
   one, persisted immediately so a retried sync reuses the same id.  This
   is the only write the mapper performs.
2. **Item parent resolution** -- an item's ``shoppingListId`` is the
   *server* id of its owning list.  Items whose list has no server id yet
   cannot be represented on the wire; they are returned as ``deferred``
   instead of being sent.

Each ``map_*`` call snapshots the pending entities once; edits made after
the snapshot are picked up by the next sync cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    StoreLocation,
    SyncableEntity,
    Tombstone,
    new_sync_id,
    utcnow,
)
from grocery_sync.store.base import EntityStore, LocalStore
from grocery_sync.sync.wire import (
    DeletedItemSync,
    ShoppingItemSync,
    ShoppingListSync,
    StoreLocationSync,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=SyncableEntity)
W = TypeVar("W")


@dataclass
class MappedBatch(Generic[E, W]):
    """Wire records for one entity kind plus the local rows they came from.

    Attributes:
        records: Wire records, in the same order as ``sources``.
        sources: Local entities as they were when the batch was built.
        deferred: Pending entities left out of this batch.
    """

    records: list[W] = field(default_factory=list)
    sources: list[E] = field(default_factory=list)
    deferred: list[E] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


class WireMapper:
    """Build outgoing wire records from the local store.

    Args:
        store: The local entity store.
        last_sync: Watermark the client believes the server is at; sent
            as ``lastSynced`` on every record.
    """

    def __init__(
        self, store: LocalStore, last_sync: datetime | None = None
    ) -> None:
        self._store = store
        self._last_sync = last_sync

    # ------------------------------------------------------------------
    # Entity kinds
    # ------------------------------------------------------------------

    def map_lists(self) -> MappedBatch[ShoppingList, ShoppingListSync]:
        """Map every pending shopping list."""
        batch: MappedBatch[ShoppingList, ShoppingListSync] = MappedBatch()
        for lst in self._store.lists.list_pending_sync():
            lst = self._ensure_sync_id(self._store.lists, lst)
            batch.sources.append(lst)
            batch.records.append(
                ShoppingListSync(
                    id=lst.server_id,
                    name=lst.name,
                    sync_id=lst.sync_id,
                    created_at=lst.updated_at or utcnow(),
                    updated_at=lst.updated_at or utcnow(),
                    last_synced=self._last_sync,
                    version=None,
                )
            )
        return batch

    def map_items(self) -> MappedBatch[ShoppingItem, ShoppingItemSync]:
        """Map every pending item whose owning list has a server id.

        Items of lists without a server id end up in ``deferred``.
        """
        batch: MappedBatch[ShoppingItem, ShoppingItemSync] = MappedBatch()
        server_ids: dict[int, int | None] = {}

        for item in self._store.items.list_pending_sync():
            if item.list_id not in server_ids:
                owner = self._store.lists.get(item.list_id)
                server_ids[item.list_id] = (
                    owner.server_id if owner is not None else None
                )
            list_server_id = server_ids[item.list_id]

            if list_server_id is None:
                logger.debug(
                    "Deferring item %s: list %s has no server id",
                    item.id,
                    item.list_id,
                )
                batch.deferred.append(item)
                continue

            item = self._ensure_sync_id(self._store.items, item)
            batch.sources.append(item)
            batch.records.append(
                ShoppingItemSync(
                    id=item.server_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit_type=item.unit_type,
                    checked=item.is_checked,
                    sort_index=item.sort_index,
                    shopping_list_id=list_server_id,
                    sync_id=item.sync_id,
                    created_at=item.date_created,
                    updated_at=item.updated_at or utcnow(),
                    last_synced=self._last_sync,
                    version=None,
                )
            )
        return batch

    def map_stores(self) -> MappedBatch[StoreLocation, StoreLocationSync]:
        """Map every pending store location."""
        batch: MappedBatch[StoreLocation, StoreLocationSync] = MappedBatch()
        for store in self._store.stores.list_pending_sync():
            store = self._ensure_sync_id(self._store.stores, store)
            batch.sources.append(store)
            batch.records.append(
                StoreLocationSync(
                    id=store.server_id,
                    name=store.name,
                    address=store.address,
                    latitude=store.latitude,
                    longitude=store.longitude,
                    geofence_id=store.geofence_id,
                    sync_id=store.sync_id,
                    created_at=store.updated_at or utcnow(),
                    updated_at=store.updated_at or utcnow(),
                    last_synced=self._last_sync,
                    version=None,
                )
            )
        return batch

    @staticmethod
    def map_tombstones(
        tombstones: list[Tombstone],
    ) -> list[DeletedItemSync]:
        """Map tombstones to ``deletedItems`` records."""
        return [
            DeletedItemSync(
                sync_id=t.sync_id,
                original_id=t.original_id,
                entity_type=t.entity_type.value,
                deleted_at=t.deleted_at,
            )
            for t in tombstones
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_sync_id(table: EntityStore[E], entity: E) -> E:
        """Assign and persist a stable id if *entity* has none."""
        if entity.sync_id:
            return entity
        entity = entity.model_copy(update={"sync_id": new_sync_id()})
        table.update(entity)
        logger.debug(
            "Assigned sync id %s to %s %s",
            entity.sync_id,
            type(entity).__name__,
            entity.id,
        )
        return entity
