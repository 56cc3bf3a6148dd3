"""Reconcile server records with local entities.

Every server record is matched against the local store with an ordered
list of ``MatchRule`` objects.  Rules are evaluated first-match-wins:

========  ==================  ============================================
Kind      Rule                Condition
========  ==================  ============================================
all       ``sync_id``         stable id equal
all       ``server_id``       record carries no stable id, server id equal
store     ``geofence_id``     non-empty geofence id equal
store     ``coordinates``     latitude and longitude within 1e-4 degrees
store     ``name_address``    name and address equal, case-insensitive
========  ==================  ============================================

A matched entity is updated in place (local key kept, ``server_id`` set,
status ``SYNCED``); an unmatched record is inserted as ``SYNCED``.  A store
matched by a heuristic rule adopts the record's ``sync_id``, so a later
deletion of it reaches the server record.  Because every inserted record
becomes matchable by the first rule, merging the same response twice
converges to the same state.

A matched entity that was sent in this request and edited locally while
the request was in flight only receives its server id; the local edit
stays pending and is uploaded by the next cycle.

An unmatched record is not inserted when its entity was deleted locally:
either it was sent in this request and is gone now, or a tombstone for it
is still waiting to be acknowledged.

Entity-level problems (an item whose list is unknown locally, a store
constraint violation) are logged and counted as skipped; they never abort
the merge of the remaining records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Generic, TypeVar

from grocery_sync.exceptions import StoreError
from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    StoreLocation,
    SyncableEntity,
    SyncStatus,
    utcnow,
)
from grocery_sync.store.base import LocalStore
from grocery_sync.sync.models import KindStats, MergeStats
from grocery_sync.sync.wire import (
    EntitySync,
    ShoppingItemSync,
    ShoppingListSync,
    StoreLocationSync,
    SyncResponse,
)

logger = logging.getLogger(__name__)

# About 10 m at the equator.
COORDINATE_EPSILON = 1e-4

E = TypeVar("E", bound=SyncableEntity)
W = TypeVar("W", bound=EntitySync)


@dataclass(frozen=True)
class MatchRule(Generic[E, W]):
    """One identity heuristic: returns the local entity or ``None``."""

    name: str
    find: Callable[[W], E | None]


class EntityMatcher(Generic[E, W]):
    """Evaluate an ordered list of rules, first match wins.

    Args:
        rules: Rules in priority order.  New heuristics are appended to
            the list; the evaluation loop does not change.
    """

    def __init__(self, rules: list[MatchRule[E, W]]) -> None:
        self.rules = list(rules)

    def match(self, record: W) -> tuple[E | None, str | None]:
        """Return ``(entity, rule_name)`` or ``(None, None)``."""
        for rule in self.rules:
            found = rule.find(record)
            if found is not None:
                return found, rule.name
        return None, None


# ---------------------------------------------------------------------------
# Rule factories
# ---------------------------------------------------------------------------


def _identity_rules(table) -> list[MatchRule]:
    def by_sync_id(record: EntitySync):
        if not record.sync_id:
            return None
        return table.find_by_sync_id(record.sync_id)

    def by_server_id(record: EntitySync):
        if record.sync_id or record.id is None:
            return None
        return table.find_by_server_id(record.id)

    return [
        MatchRule("sync_id", by_sync_id),
        MatchRule("server_id", by_server_id),
    ]


def list_matcher(
    store: LocalStore,
) -> EntityMatcher[ShoppingList, ShoppingListSync]:
    return EntityMatcher(_identity_rules(store.lists))


def item_matcher(
    store: LocalStore,
) -> EntityMatcher[ShoppingItem, ShoppingItemSync]:
    return EntityMatcher(_identity_rules(store.items))


def coordinates_match(
    store: StoreLocation, record: StoreLocationSync
) -> bool:
    return (
        abs(store.latitude - record.latitude) < COORDINATE_EPSILON
        and abs(store.longitude - record.longitude) < COORDINATE_EPSILON
    )


def name_address_match(
    store: StoreLocation, record: StoreLocationSync
) -> bool:
    return (
        store.name.casefold() == record.name.casefold()
        and store.address.casefold() == record.address.casefold()
    )


def store_matcher(
    store: LocalStore,
) -> EntityMatcher[StoreLocation, StoreLocationSync]:
    table = store.stores

    def by_geofence_id(record: StoreLocationSync):
        if not record.geofence_id:
            return None
        return table.find_by_geofence_id(record.geofence_id)

    def scan(predicate):
        def find(record: StoreLocationSync):
            return next(
                (s for s in table.list_all() if predicate(s, record)), None
            )

        return find

    return EntityMatcher(
        _identity_rules(table)
        + [
            MatchRule("geofence_id", by_geofence_id),
            MatchRule("coordinates", scan(coordinates_match)),
            MatchRule("name_address", scan(name_address_match)),
        ]
    )


# ---------------------------------------------------------------------------
# Merger
# ---------------------------------------------------------------------------


class ResponseMerger:
    """Apply a ``SyncResponse`` to the local store.

    Args:
        store: The local entity store.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._lists = list_matcher(store)
        self._items = item_matcher(store)
        self._stores = store_matcher(store)
        self._in_flight: dict[str, datetime | None] = {}
        self._tombstoned: set[str] = set()

    def merge(
        self,
        response: SyncResponse,
        in_flight: dict[str, datetime | None] | None = None,
    ) -> MergeStats:
        """Merge all kinds; lists first so items can resolve their list.

        Args:
            response: The server response.
            in_flight: ``sync_id -> updated_at`` of the entities sent in
                the request.  A matched entity edited since then only
                gets its server id; its edit stays pending.
        """
        self._in_flight = in_flight or {}
        self._tombstoned = {
            t.sync_id for t in self._store.tombstones.list_unacknowledged()
        }
        stats = MergeStats()
        stats.lists = self.merge_lists(response.shopping_lists)
        stats.items = self.merge_items(response.shopping_items)
        stats.stores = self.merge_stores(response.store_locations)
        logger.debug(
            "Merged response: lists=%s items=%s stores=%s",
            stats.lists,
            stats.items,
            stats.stores,
        )
        return stats

    # ------------------------------------------------------------------
    # Per kind
    # ------------------------------------------------------------------

    def merge_lists(self, records: list[ShoppingListSync]) -> KindStats:
        stats = KindStats()
        table = self._store.lists
        for record in records:
            existing, _ = self._lists.match(record)
            try:
                if self._edited_in_flight(existing):
                    self._link_server_id(table, existing, record)
                    stats.updated += 1
                elif existing is not None:
                    table.update(
                        existing.model_copy(
                            update={
                                "name": record.name,
                                "server_id": record.id,
                                "updated_at": record.updated_at
                                or existing.updated_at,
                                "sync_status": SyncStatus.SYNCED,
                            }
                        )
                    )
                    stats.updated += 1
                elif self._deleted_locally(record):
                    stats.skipped += 1
                else:
                    table.insert(
                        ShoppingList(
                            name=record.name,
                            sync_id=record.sync_id,
                            server_id=record.id,
                            updated_at=record.updated_at or utcnow(),
                            sync_status=SyncStatus.SYNCED,
                        )
                    )
                    stats.inserted += 1
            except StoreError as exc:
                logger.error(
                    "Cannot merge list %s: %s", record.sync_id, exc
                )
                stats.skipped += 1
        return stats

    def merge_items(self, records: list[ShoppingItemSync]) -> KindStats:
        stats = KindStats()
        table = self._store.items
        for record in records:
            owner = (
                self._store.lists.find_by_server_id(record.shopping_list_id)
                if record.shopping_list_id is not None
                else None
            )
            if owner is None:
                logger.warning(
                    "Skipping item %s: list %s is not known locally",
                    record.sync_id,
                    record.shopping_list_id,
                )
                stats.skipped += 1
                continue

            existing, _ = self._items.match(record)
            try:
                if self._edited_in_flight(existing):
                    self._link_server_id(table, existing, record)
                    stats.updated += 1
                elif existing is not None:
                    table.update(
                        existing.model_copy(
                            update={
                                "name": record.name,
                                "quantity": record.quantity,
                                "unit_type": record.unit_type,
                                "is_checked": record.checked,
                                "sort_index": record.sort_index,
                                "list_id": owner.id,
                                "server_id": record.id,
                                "updated_at": record.updated_at
                                or existing.updated_at,
                                "sync_status": SyncStatus.SYNCED,
                            }
                        )
                    )
                    stats.updated += 1
                elif self._deleted_locally(record):
                    stats.skipped += 1
                else:
                    table.insert(
                        ShoppingItem(
                            name=record.name,
                            quantity=record.quantity,
                            unit_type=record.unit_type,
                            is_checked=record.checked,
                            sort_index=record.sort_index,
                            list_id=owner.id,
                            date_created=record.created_at or utcnow(),
                            sync_id=record.sync_id,
                            server_id=record.id,
                            updated_at=record.updated_at or utcnow(),
                            sync_status=SyncStatus.SYNCED,
                        )
                    )
                    stats.inserted += 1
            except StoreError as exc:
                logger.error(
                    "Cannot merge item %s: %s", record.sync_id, exc
                )
                stats.skipped += 1
        return stats

    def merge_stores(self, records: list[StoreLocationSync]) -> KindStats:
        stats = KindStats()
        table = self._store.stores
        for record in records:
            existing, rule = self._stores.match(record)
            try:
                if self._edited_in_flight(existing):
                    self._link_server_id(table, existing, record)
                    stats.updated += 1
                elif existing is not None:
                    if rule != "sync_id":
                        logger.info(
                            "Store %s matched local store %s by %s",
                            record.sync_id,
                            existing.id,
                            rule,
                        )
                    table.update(
                        existing.model_copy(
                            update={
                                "name": record.name,
                                "address": record.address,
                                "latitude": record.latitude,
                                "longitude": record.longitude,
                                "geofence_id": record.geofence_id
                                or existing.geofence_id,
                                "sync_id": record.sync_id
                                or existing.sync_id,
                                "server_id": record.id,
                                "updated_at": record.updated_at
                                or existing.updated_at,
                                "sync_status": SyncStatus.SYNCED,
                            }
                        )
                    )
                    stats.updated += 1
                elif self._deleted_locally(record):
                    stats.skipped += 1
                else:
                    table.insert(
                        StoreLocation(
                            name=record.name,
                            address=record.address,
                            latitude=record.latitude,
                            longitude=record.longitude,
                            geofence_id=record.geofence_id,
                            sync_id=record.sync_id,
                            server_id=record.id,
                            updated_at=record.updated_at or utcnow(),
                            sync_status=SyncStatus.SYNCED,
                        )
                    )
                    stats.inserted += 1
            except StoreError as exc:
                logger.error(
                    "Cannot merge store %s: %s", record.sync_id, exc
                )
                stats.skipped += 1
        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _edited_in_flight(self, existing: SyncableEntity | None) -> bool:
        if existing is None or existing.sync_id not in self._in_flight:
            return False
        return existing.updated_at != self._in_flight[existing.sync_id]

    @staticmethod
    def _link_server_id(table, existing: SyncableEntity, record) -> None:
        logger.debug(
            "%s %s changed during sync, keeping local edit",
            type(existing).__name__,
            existing.id,
        )
        if existing.server_id != record.id:
            table.update(existing.model_copy(update={"server_id": record.id}))

    def _deleted_locally(self, record: EntitySync) -> bool:
        if not record.sync_id:
            return False
        if (
            record.sync_id in self._in_flight
            or record.sync_id in self._tombstoned
        ):
            logger.info(
                "Not restoring %s %s: deleted locally",
                type(record).__name__,
                record.sync_id,
            )
            return True
        return False
