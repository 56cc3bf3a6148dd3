"""Wire-format models for the ``/api/sync`` RPC.

Field names follow the server's JSON contract (camelCase).  Models accept
both the alias and the Python attribute name on input, and are serialized
with ``to_wire()`` which emits aliases and ISO-8601 date-times.

``version`` is reserved by the contract and always sent as ``null``.

Date-times are held as naive UTC, like the local store.  A value that
arrives with an offset (``...Z``, ``+02:00``) is converted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class WireModel(BaseModel):
    """Base class for all wire records."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible dict sent to the server."""
        return self.model_dump(mode="json", by_alias=True)


class EntitySync(WireModel):
    """Fields carried by every synchronized entity record."""

    id: int | None = None
    sync_id: str | None = Field(default=None, alias="syncId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    last_synced: datetime | None = Field(default=None, alias="lastSynced")
    version: int | None = None

    @field_validator("created_at", "updated_at", "last_synced")
    @classmethod
    def _utc_timestamps(cls, value: datetime | None) -> datetime | None:
        return _naive_utc(value)


class ShoppingListSync(EntitySync):
    name: str


class ShoppingItemSync(EntitySync):
    name: str
    quantity: float
    unit_type: str = Field(alias="unitType")
    checked: bool = False
    sort_index: int = Field(default=0, alias="sortIndex")
    shopping_list_id: int | None = Field(
        default=None, alias="shoppingListId"
    )


class StoreLocationSync(EntitySync):
    name: str
    address: str = ""
    latitude: float
    longitude: float
    geofence_id: str = Field(default="", alias="geofenceId")

    @field_validator("address", "geofence_id", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class DeletedItemSync(WireModel):
    sync_id: str | None = Field(default=None, alias="syncId")
    original_id: int | None = Field(default=None, alias="originalId")
    entity_type: str = Field(alias="entityType")
    deleted_at: datetime = Field(alias="deletedAt")

    @field_validator("deleted_at")
    @classmethod
    def _utc_deleted_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class SyncRequest(WireModel):
    """Payload of one ``synchronize`` call."""

    last_sync_timestamp: datetime | None = Field(
        default=None, alias="lastSyncTimestamp"
    )
    shopping_lists: list[ShoppingListSync] = Field(
        default_factory=list, alias="shoppingLists"
    )
    shopping_items: list[ShoppingItemSync] = Field(
        default_factory=list, alias="shoppingItems"
    )
    store_locations: list[StoreLocationSync] = Field(
        default_factory=list, alias="storeLocations"
    )
    deleted_items: list[DeletedItemSync] = Field(
        default_factory=list, alias="deletedItems"
    )

    @field_validator("last_sync_timestamp")
    @classmethod
    def _utc_watermark(cls, value: datetime | None) -> datetime | None:
        return _naive_utc(value)


class SyncResponse(WireModel):
    """The server's authoritative view since the last watermark."""

    server_timestamp: datetime = Field(alias="serverTimestamp")
    shopping_lists: list[ShoppingListSync] = Field(
        default_factory=list, alias="shoppingLists"
    )
    shopping_items: list[ShoppingItemSync] = Field(
        default_factory=list, alias="shoppingItems"
    )
    store_locations: list[StoreLocationSync] = Field(
        default_factory=list, alias="storeLocations"
    )

    @field_validator("server_timestamp")
    @classmethod
    def _utc_server_timestamp(cls, value: datetime) -> datetime:
        return _naive_utc(value)

    @field_validator(
        "shopping_lists", "shopping_items", "store_locations", mode="before"
    )
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
