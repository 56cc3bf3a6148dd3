"""Local data mutations for lists, items and stores.

Every write goes through ``ShoppingRepository`` so the sync bookkeeping
stays consistent:

* new entities get a stable ``sync_id`` and status ``LOCAL_ONLY``;
* edits refresh ``updated_at``; a ``SYNCED`` entity becomes
  ``MODIFIED_LOCALLY`` (``LOCAL_ONLY`` stays ``LOCAL_ONLY``);
* deletions leave a tombstone when the server may know the entity.

Input is checked with ``grocery_sync.validators``; invalid input raises
``ValueError`` before anything is written.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import (
    EntityKind,
    ShoppingItem,
    ShoppingList,
    SortMode,
    StoreLocation,
    SyncableEntity,
    SyncStatus,
    new_sync_id,
    utcnow,
)
from .store.base import LocalStore
from .sync.tombstones import TombstoneTracker
from .validators import (
    validate_coordinates,
    validate_name,
    validate_quantity,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "My first list"


def _check(result: tuple[bool, str]) -> None:
    ok, message = result
    if not ok:
        raise ValueError(message)


def _touched(entity: SyncableEntity, **changes: Any) -> Any:
    """Copy *entity* with *changes*, a fresh timestamp and pending status."""
    status = entity.sync_status
    if status == SyncStatus.SYNCED:
        status = SyncStatus.MODIFIED_LOCALLY
    return entity.model_copy(
        update={**changes, "updated_at": utcnow(), "sync_status": status}
    )


def _sort_key(mode: SortMode):
    if mode == SortMode.DATE:
        return lambda i: i.date_created, True
    if mode == SortMode.QUANTITY:
        return lambda i: i.quantity, True
    if mode == SortMode.CHECKED:
        return lambda i: (i.is_checked, i.name.casefold()), False
    return lambda i: i.sort_index, False


class ShoppingRepository:
    """Create, edit and delete local entities.

    Args:
        store: The local entity store.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self.tombstones = TombstoneTracker(store.tombstones)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def create_list(self, name: str) -> ShoppingList:
        _check(validate_name(name, "List name"))
        lst = self.store.lists.insert(
            ShoppingList(
                name=name.strip(),
                sync_id=new_sync_id(),
                updated_at=utcnow(),
            )
        )
        logger.debug("Created list %s (%s)", lst.id, lst.name)
        return lst

    def rename_list(self, list_id: int, name: str) -> ShoppingList:
        _check(validate_name(name, "List name"))
        lst = _touched(self._get_list(list_id), name=name.strip())
        self.store.lists.update(lst)
        return lst

    def delete_list(self, list_id: int) -> None:
        """Delete a list and its items, leaving tombstones as needed.

        Items are tombstoned before their list so the server receives
        the deletions in dependency order.
        """
        lst = self._get_list(list_id)
        for item in self.store.items.list_by_list(list_id):
            self.tombstones.record_deletion(item, EntityKind.SHOPPING_ITEM)
        self.tombstones.record_deletion(lst, EntityKind.SHOPPING_LIST)
        self.store.lists.delete(list_id)
        logger.info("Deleted list %s (%s)", list_id, lst.name)

    def all_lists(self) -> list[ShoppingList]:
        return self.store.lists.list_all()

    def get_or_create_default_list(self) -> ShoppingList:
        """Return the first list, creating one when there is none."""
        lists = self.store.lists.list_all()
        if lists:
            return lists[0]
        return self.create_list(DEFAULT_LIST_NAME)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def add_item(
        self,
        list_id: int,
        name: str,
        quantity: float = 1.0,
        unit_type: str = "UNIT",
        sort_index: int = -1,
    ) -> ShoppingItem:
        """Add an item to a list.

        Args:
            list_id: Local key of the owning list.
            name: Item name.
            quantity: Non-negative quantity.
            unit_type: Unit string.
            sort_index: Position in the list; ``-1`` appends.

        Raises:
            ValueError: On invalid input or an unknown list.
        """
        _check(validate_name(name, "Item name"))
        _check(validate_quantity(quantity))
        self._get_list(list_id)
        if sort_index < 0:
            sort_index = len(self.store.items.list_by_list(list_id))

        now = utcnow()
        return self.store.items.insert(
            ShoppingItem(
                name=name.strip(),
                quantity=quantity,
                unit_type=unit_type,
                sort_index=sort_index,
                list_id=list_id,
                date_created=now,
                sync_id=new_sync_id(),
                updated_at=now,
            )
        )

    def update_item(self, item_id: int, **changes: Any) -> ShoppingItem:
        """Apply *changes* (``name``, ``quantity``, ``unit_type``,
        ``is_checked``, ``sort_index``) to an item."""
        allowed = {"name", "quantity", "unit_type", "is_checked", "sort_index"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(
                f"Cannot update item fields: {', '.join(sorted(unknown))}"
            )
        if "name" in changes:
            _check(validate_name(changes["name"], "Item name"))
            changes["name"] = changes["name"].strip()
        if "quantity" in changes:
            _check(validate_quantity(changes["quantity"]))

        item = _touched(self._get_item(item_id), **changes)
        self.store.items.update(item)
        return item

    def toggle_checked(self, item_id: int) -> ShoppingItem:
        item = self._get_item(item_id)
        return self.update_item(item_id, is_checked=not item.is_checked)

    def reorder_items(
        self, list_id: int, ordered_ids: list[int]
    ) -> list[ShoppingItem]:
        """Rewrite ``sort_index`` to follow *ordered_ids*.

        Only items whose position actually changes are touched.

        Raises:
            ValueError: If *ordered_ids* is not a permutation of the
                list's items.
        """
        items = {i.id: i for i in self.store.items.list_by_list(list_id)}
        if sorted(ordered_ids) != sorted(items):
            raise ValueError(
                "Ordered ids must contain every item of the list exactly once"
            )
        result = []
        for index, item_id in enumerate(ordered_ids):
            item = items[item_id]
            if item.sort_index != index:
                item = _touched(item, sort_index=index)
                self.store.items.update(item)
            result.append(item)
        return result

    def delete_item(self, item_id: int) -> None:
        item = self._get_item(item_id)
        self.tombstones.record_deletion(item, EntityKind.SHOPPING_ITEM)
        self.store.items.delete(item_id)

    def items_for_list(
        self, list_id: int, sort_mode: SortMode = SortMode.CUSTOM
    ) -> list[ShoppingItem]:
        """Return the items of a list in display order.

        ``CUSTOM`` uses ``sort_index``; ``DATE`` shows newest first;
        ``QUANTITY`` shows largest first; ``CHECKED`` puts unchecked items
        first, then sorts by name.
        """
        key, reverse = _sort_key(SortMode(sort_mode))
        return sorted(
            self.store.items.list_by_list(list_id), key=key, reverse=reverse
        )

    def count_unchecked(self, list_id: int | None = None) -> int:
        """Count unchecked items of one list, or of all lists."""
        if list_id is None:
            items = self.store.items.list_all()
        else:
            items = self.store.items.list_by_list(list_id)
        return sum(1 for i in items if not i.is_checked)

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def add_store(
        self,
        name: str,
        latitude: float,
        longitude: float,
        address: str = "",
        geofence_id: str = "",
    ) -> StoreLocation:
        _check(validate_name(name, "Store name"))
        _check(validate_coordinates(latitude, longitude))
        return self.store.stores.insert(
            StoreLocation(
                name=name.strip(),
                address=address.strip(),
                latitude=latitude,
                longitude=longitude,
                geofence_id=geofence_id or new_sync_id(),
                sync_id=new_sync_id(),
                updated_at=utcnow(),
            )
        )

    def update_store(self, store_id: int, **changes: Any) -> StoreLocation:
        """Apply *changes* (``name``, ``address``, ``latitude``,
        ``longitude``, ``geofence_id``) to a store."""
        allowed = {"name", "address", "latitude", "longitude", "geofence_id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(
                f"Cannot update store fields: {', '.join(sorted(unknown))}"
            )
        current = self._get_store(store_id)
        if "name" in changes:
            _check(validate_name(changes["name"], "Store name"))
        _check(
            validate_coordinates(
                changes.get("latitude", current.latitude),
                changes.get("longitude", current.longitude),
            )
        )
        store = _touched(current, **changes)
        self.store.stores.update(store)
        return store

    def delete_store(self, store_id: int) -> None:
        store = self._get_store(store_id)
        self.tombstones.record_deletion(store, EntityKind.STORE_LOCATION)
        self.store.stores.delete(store_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_list(self, list_id: int) -> ShoppingList:
        lst = self.store.lists.get(list_id)
        if lst is None:
            raise ValueError(f"List {list_id} not found")
        return lst

    def _get_item(self, item_id: int) -> ShoppingItem:
        item = self.store.items.get(item_id)
        if item is None:
            raise ValueError(f"Item {item_id} not found")
        return item

    def _get_store(self, store_id: int) -> StoreLocation:
        store = self.store.stores.get(store_id)
        if store is None:
            raise ValueError(f"Store {store_id} not found")
        return store
