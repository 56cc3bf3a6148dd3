"""SQLite implementation of the entity store contract.

One database file holds four tables:

* ``shopping_lists``
* ``shopping_items`` -- ``list_id`` references ``shopping_lists`` with
  ``ON DELETE CASCADE``
* ``store_locations``
* ``deleted_items`` -- the tombstone log

``sync_id`` is ``UNIQUE`` in every entity table, so a duplicate insert of
the same stable id fails loudly (``StoreError``) instead of creating a
second row.  Every write runs in its own transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from grocery_sync.exceptions import StoreError
from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    StoreLocation,
    SyncStatus,
    Tombstone,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS shopping_lists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    sync_id TEXT UNIQUE,
    server_id INTEGER,
    updated_at TEXT,
    sync_status TEXT NOT NULL DEFAULT 'LOCAL_ONLY'
);

CREATE TABLE IF NOT EXISTS shopping_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    quantity REAL NOT NULL DEFAULT 1.0,
    unit_type TEXT NOT NULL,
    is_checked INTEGER NOT NULL DEFAULT 0,
    sort_index INTEGER NOT NULL DEFAULT 0,
    list_id INTEGER NOT NULL
        REFERENCES shopping_lists(id) ON DELETE CASCADE,
    date_created TEXT NOT NULL,
    sync_id TEXT UNIQUE,
    server_id INTEGER,
    updated_at TEXT,
    sync_status TEXT NOT NULL DEFAULT 'LOCAL_ONLY'
);

CREATE INDEX IF NOT EXISTS idx_items_list ON shopping_items(list_id);

CREATE TABLE IF NOT EXISTS store_locations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    address TEXT NOT NULL DEFAULT '',
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    geofence_id TEXT NOT NULL DEFAULT '',
    sync_id TEXT UNIQUE,
    server_id INTEGER,
    updated_at TEXT,
    sync_status TEXT NOT NULL DEFAULT 'LOCAL_ONLY'
);

CREATE TABLE IF NOT EXISTS deleted_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sync_id TEXT NOT NULL,
    original_id INTEGER,
    entity_type TEXT NOT NULL,
    deleted_at TEXT NOT NULL,
    acknowledged INTEGER NOT NULL DEFAULT 0
);
"""


class _Table(Generic[M]):
    """Row mapping shared by all tables."""

    table: str
    model: type[M]
    columns: tuple[str, ...]

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _to_row(self, entity: M) -> dict[str, Any]:
        return entity.model_dump(mode="json", include=set(self.columns))

    def _from_row(self, row: sqlite3.Row) -> M:
        return self.model(**dict(row))

    def _write(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"{self.table}: {exc}") from exc

    def _fetch_one(self, where: str, params: Any) -> M | None:
        row = self._conn.execute(
            f"SELECT * FROM {self.table} WHERE {where} LIMIT 1", params
        ).fetchone()
        return self._from_row(row) if row is not None else None

    def _fetch_all(self, where: str = "1", params: Any = ()) -> list[M]:
        rows = self._conn.execute(
            f"SELECT * FROM {self.table} WHERE {where} ORDER BY id", params
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def insert(self, entity: M) -> M:
        row = self._to_row(entity)
        names = ", ".join(row)
        marks = ", ".join(f":{c}" for c in row)
        cur = self._write(
            f"INSERT INTO {self.table} ({names}) VALUES ({marks})", row
        )
        return entity.model_copy(update={"id": cur.lastrowid})

    def delete(self, local_id: int) -> None:
        self._write(f"DELETE FROM {self.table} WHERE id = ?", (local_id,))

    def get(self, local_id: int) -> M | None:
        return self._fetch_one("id = ?", (local_id,))

    def list_all(self) -> list[M]:
        return self._fetch_all()


class _EntityTable(_Table[M]):
    """Tables of syncable entities."""

    def update(self, entity: M) -> None:
        local_id = getattr(entity, "id", None)
        if local_id is None:
            raise StoreError(f"{self.table}: cannot update without id")
        row = self._to_row(entity)
        assignments = ", ".join(f"{c} = :{c}" for c in row)
        row["_id"] = local_id
        self._write(
            f"UPDATE {self.table} SET {assignments} WHERE id = :_id", row
        )

    def find_by_sync_id(self, sync_id: str) -> M | None:
        return self._fetch_one("sync_id = ?", (sync_id,))

    def find_by_server_id(self, server_id: int) -> M | None:
        return self._fetch_one("server_id = ?", (server_id,))

    def list_pending_sync(self) -> list[M]:
        return self._fetch_all(
            "sync_status != ?", (SyncStatus.SYNCED.value,)
        )

    def set_sync_status(self, sync_id: str, status: SyncStatus) -> None:
        self._write(
            f"UPDATE {self.table} SET sync_status = ? WHERE sync_id = ?",
            (status.value, sync_id),
        )


_SYNC_COLUMNS = ("sync_id", "server_id", "updated_at", "sync_status")


class ListTable(_EntityTable[ShoppingList]):
    table = "shopping_lists"
    model = ShoppingList
    columns = ("name",) + _SYNC_COLUMNS


class ItemTable(_EntityTable[ShoppingItem]):
    table = "shopping_items"
    model = ShoppingItem
    columns = (
        "name",
        "quantity",
        "unit_type",
        "is_checked",
        "sort_index",
        "list_id",
        "date_created",
    ) + _SYNC_COLUMNS

    def list_by_list(self, list_id: int) -> list[ShoppingItem]:
        return self._fetch_all("list_id = ?", (list_id,))


class StoreLocationTable(_EntityTable[StoreLocation]):
    table = "store_locations"
    model = StoreLocation
    columns = (
        "name",
        "address",
        "latitude",
        "longitude",
        "geofence_id",
    ) + _SYNC_COLUMNS

    def find_by_geofence_id(self, geofence_id: str) -> StoreLocation | None:
        return self._fetch_one("geofence_id = ?", (geofence_id,))


class TombstoneTable(_Table[Tombstone]):
    table = "deleted_items"
    model = Tombstone
    columns = (
        "sync_id",
        "original_id",
        "entity_type",
        "deleted_at",
        "acknowledged",
    )

    def list_unacknowledged(self) -> list[Tombstone]:
        return self._fetch_all("acknowledged = 0")

    def acknowledge(self, ids: list[int]) -> None:
        if not ids:
            return
        marks = ", ".join("?" for _ in ids)
        self._write(
            f"UPDATE {self.table} SET acknowledged = 1 WHERE id IN ({marks})",
            list(ids),
        )

    def purge_acknowledged(self) -> int:
        cur = self._write(f"DELETE FROM {self.table} WHERE acknowledged = 1")
        return cur.rowcount


class SQLiteStore:
    """Local store backed by one SQLite database.

    Args:
        path: Database file path, or ``":memory:"``.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("Opened local store at %s", self.path)

        self.lists = ListTable(self._conn)
        self.items = ItemTable(self._conn)
        self.stores = StoreLocationTable(self._conn)
        self.tombstones = TombstoneTable(self._conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
