"""Entity store contract consumed by the sync engine.

The engine only depends on these protocols; ``SQLiteStore`` is the
bundled implementation.  Stores are used sequentially from a single
caller and perform no locking of their own.
"""

from __future__ import annotations

from typing import Protocol, TypeVar

from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    StoreLocation,
    SyncStatus,
    Tombstone,
)

T = TypeVar("T")


class EntityStore(Protocol[T]):
    """CRUD and lookup-by-key access to one entity collection."""

    def insert(self, entity: T) -> T:
        """Insert *entity* and return it with its local key assigned."""
        ...  # pragma: no cover

    def update(self, entity: T) -> None:
        """Overwrite the row whose local key is ``entity.id``."""
        ...  # pragma: no cover

    def delete(self, local_id: int) -> None: ...  # pragma: no cover

    def get(self, local_id: int) -> T | None: ...  # pragma: no cover

    def find_by_sync_id(self, sync_id: str) -> T | None:
        ...  # pragma: no cover

    def find_by_server_id(self, server_id: int) -> T | None:
        ...  # pragma: no cover

    def list_pending_sync(self) -> list[T]:
        """Return all entities whose status is not ``SYNCED``."""
        ...  # pragma: no cover

    def list_all(self) -> list[T]: ...  # pragma: no cover

    def set_sync_status(self, sync_id: str, status: SyncStatus) -> None:
        ...  # pragma: no cover


class ListStore(EntityStore[ShoppingList], Protocol):
    pass


class ItemStore(EntityStore[ShoppingItem], Protocol):
    def list_by_list(self, list_id: int) -> list[ShoppingItem]:
        ...  # pragma: no cover


class StoreLocationStore(EntityStore[StoreLocation], Protocol):
    def find_by_geofence_id(self, geofence_id: str) -> StoreLocation | None:
        ...  # pragma: no cover


class TombstoneStore(Protocol):
    """Append-only deletion log."""

    def insert(self, tombstone: Tombstone) -> Tombstone: ...  # pragma: no cover

    def list_unacknowledged(self) -> list[Tombstone]:
        ...  # pragma: no cover

    def acknowledge(self, ids: list[int]) -> None:
        ...  # pragma: no cover

    def purge_acknowledged(self) -> int:
        """Delete acknowledged rows and return how many were removed."""
        ...  # pragma: no cover

    def list_all(self) -> list[Tombstone]: ...  # pragma: no cover


class LocalStore(Protocol):
    """Aggregate of the four collections used by the engine."""

    lists: ListStore
    items: ItemStore
    stores: StoreLocationStore
    tombstones: TombstoneStore
