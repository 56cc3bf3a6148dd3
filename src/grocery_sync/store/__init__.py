"""Local entity storage: the store contract and its SQLite implementation."""

from .base import (
    EntityStore,
    ItemStore,
    ListStore,
    LocalStore,
    StoreLocationStore,
    TombstoneStore,
)
from .sqlite import SQLiteStore

__all__ = [
    "EntityStore",
    "ItemStore",
    "ListStore",
    "LocalStore",
    "SQLiteStore",
    "StoreLocationStore",
    "TombstoneStore",
]
