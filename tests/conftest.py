"""Shared pytest fixtures for grocery-sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest
from dotenv import load_dotenv

from grocery_sync.config import Config
from grocery_sync.repository import ShoppingRepository
from grocery_sync.session import Session
from grocery_sync.store import SQLiteStore
from grocery_sync.sync.wire import (
    ShoppingItemSync,
    ShoppingListSync,
    StoreLocationSync,
    SyncRequest,
    SyncResponse,
)

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live grocery server",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live grocery server"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------


class FakeSyncClient:
    """In-memory stand-in for ``SyncClient``.

    Behaves like the grocery server: assigns server ids to records it has
    not seen (keyed by ``syncId``), remembers them, and echoes every
    record of the request back with its id (lists only while
    ``echo_lists`` is set).  ``extra_*`` records are
    appended to every response, as if created by another device.

    ``errors`` is a queue consumed one entry per ``synchronize`` call: an
    exception is raised, ``None`` lets that call succeed.  ``on_request``
    runs before the response is built, to simulate concurrent edits.
    """

    def __init__(
        self,
        first_list_id: int = 500,
        first_item_id: int = 900,
        first_store_id: int = 300,
        errors: Optional[list[Exception]] = None,
        refresh_ok: bool = True,
    ) -> None:
        self.requests: list[SyncRequest] = []
        self.errors = list(errors or [])
        self.refresh_ok = refresh_ok
        self.on_request: Optional[Callable[[SyncRequest], None]] = None
        self.echo_lists = True
        self.authenticated = True
        self.refresh_calls = 0
        self.logout_calls = 0

        self.list_ids: dict[str, int] = {}
        self.item_ids: dict[str, int] = {}
        self.store_ids: dict[str, int] = {}
        self.deleted: list[str] = []
        self.extra_lists: list[ShoppingListSync] = []
        self.extra_items: list[ShoppingItemSync] = []
        self.extra_stores: list[StoreLocationSync] = []

        self._next = {
            "list": first_list_id,
            "item": first_item_id,
            "store": first_store_id,
        }
        self.clock = datetime(2026, 10, 19, 12, 0, 0)

    def _assign(self, ids: dict[str, int], kind: str, sync_id: str) -> int:
        if sync_id not in ids:
            ids[sync_id] = self._next[kind]
            self._next[kind] += 1
        return ids[sync_id]

    # -- SyncTransport -----------------------------------------------------

    def synchronize(self, request: SyncRequest) -> SyncResponse:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error

        lists = [
            r.model_copy(
                update={"id": self._assign(self.list_ids, "list", r.sync_id)}
            )
            for r in request.shopping_lists
        ]
        items = [
            r.model_copy(
                update={"id": self._assign(self.item_ids, "item", r.sync_id)}
            )
            for r in request.shopping_items
        ]
        stores = [
            r.model_copy(
                update={
                    "id": self._assign(self.store_ids, "store", r.sync_id)
                }
            )
            for r in request.store_locations
        ]
        self.deleted.extend(d.sync_id for d in request.deleted_items)

        self.clock += timedelta(minutes=1)
        return SyncResponse(
            server_timestamp=self.clock,
            shopping_lists=(lists if self.echo_lists else [])
            + self.extra_lists,
            shopping_items=items + self.extra_items,
            store_locations=stores + self.extra_stores,
        )

    # -- AuthCapability ----------------------------------------------------

    def is_authenticated(self) -> bool:
        return self.authenticated

    def refresh_access_token(self) -> bool:
        self.refresh_calls += 1
        return self.refresh_ok

    def logout(self) -> None:
        self.logout_calls += 1
        self.authenticated = False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config(tmp_path):
    """A Config pointing at a temp state directory."""
    return Config(
        server_url="https://grocery.example.com",
        db_path=str(tmp_path / "grocery.db"),
        state_dir=str(tmp_path / ".grocery_sync"),
        request_timeout=5.0,
        inter_phase_delay=0.0,
    )


@pytest.fixture
def store():
    """An in-memory SQLite store."""
    with SQLiteStore() as s:
        yield s


@pytest.fixture
def repo(store):
    return ShoppingRepository(store)


@pytest.fixture
def session():
    """A logged-in session."""
    return Session(
        access_token="access-1",
        refresh_token="refresh-1",
        user_id=7,
        username="alice",
    )


@pytest.fixture
def fake_client():
    return FakeSyncClient()


@pytest.fixture
def make_client():
    """Factory for FakeSyncClient with custom options."""
    return FakeSyncClient
