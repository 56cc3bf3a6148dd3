"""Pydantic models for locally stored entities.

Defines the entities persisted by the local store:

- ``ShoppingList``: a named list owning zero or more items.
- ``ShoppingItem``: one line of a list (quantity, unit, checked flag).
- ``StoreLocation``: a shop with coordinates and a geofence id.
- ``Tombstone``: a durable record of a local deletion.

Every syncable entity carries a local key (``id``, assigned by the store
and never sent to the server), a stable ``sync_id`` used to correlate local
and remote records, the server-assigned ``server_id`` and a ``sync_status``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Synchronization state of a local entity."""

    LOCAL_ONLY = "LOCAL_ONLY"
    MODIFIED_LOCALLY = "MODIFIED_LOCALLY"
    SYNCED = "SYNCED"


class EntityKind(str, Enum):
    """Entity type tags, as used in the ``deletedItems`` wire field."""

    SHOPPING_LIST = "SHOPPING_LIST"
    SHOPPING_ITEM = "SHOPPING_ITEM"
    STORE_LOCATION = "STORE_LOCATION"


class UnitType(str, Enum):
    """Units offered for item quantities."""

    UNIT = "UNIT"
    KG = "KG"
    G = "G"
    L = "L"
    ML = "ML"
    PACK = "PACK"


class SortMode(str, Enum):
    """Display orders for the items of a list."""

    CUSTOM = "CUSTOM"
    DATE = "DATE"
    QUANTITY = "QUANTITY"
    CHECKED = "CHECKED"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (wire format has no offset)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_sync_id() -> str:
    """Generate a new stable sync identifier."""
    return str(uuid.uuid4())


class SyncableEntity(BaseModel):
    """Fields shared by every entity that takes part in synchronization."""

    id: int | None = None
    sync_id: str | None = None
    server_id: int | None = None
    updated_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.LOCAL_ONLY

    model_config = {"validate_assignment": True}

    @property
    def is_synced(self) -> bool:
        return self.sync_status == SyncStatus.SYNCED


class ShoppingList(SyncableEntity):
    """A named shopping list."""

    name: str


class ShoppingItem(SyncableEntity):
    """An entry of a shopping list.

    Attributes:
        name: Display name.
        quantity: Decimal quantity.
        unit_type: Unit string (normally a ``UnitType`` value).
        is_checked: Whether the item has been picked up.
        sort_index: Manual position inside the list.
        list_id: Local key of the owning list.
        date_created: Creation time, used by the ``DATE`` sort mode.
    """

    name: str
    quantity: float = 1.0
    unit_type: str = UnitType.UNIT.value
    is_checked: bool = False
    sort_index: int = 0
    list_id: int
    date_created: datetime = Field(default_factory=utcnow)


class StoreLocation(SyncableEntity):
    """A shop location.

    ``geofence_id`` is a client-side registration handle; the server may
    return it empty and is not authoritative over it.
    """

    name: str
    address: str = ""
    latitude: float
    longitude: float
    geofence_id: str = ""


class Tombstone(BaseModel):
    """A local deletion waiting to be acknowledged by the server."""

    id: int | None = None
    sync_id: str
    original_id: int | None = None
    entity_type: EntityKind
    deleted_at: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False
