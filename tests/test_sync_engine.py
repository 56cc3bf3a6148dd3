"""Tests for the sync orchestrator."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from grocery_sync.exceptions import (
    MalformedResponseError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    SyncStatus,
)
from grocery_sync.sync.engine import SyncEngine, select_mode
from grocery_sync.sync.models import SyncMode, SyncOutcome, SyncPhase
from grocery_sync.sync.wire import ShoppingListSync

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine(store, client, session, **kwargs) -> SyncEngine:
    kwargs.setdefault("inter_phase_delay", 0)
    return SyncEngine(store=store, client=client, session=session, **kwargs)


@pytest.fixture
def list_with_item(repo):
    lst = repo.create_list("Groceries")
    item = repo.add_item(lst.id, "Milk", quantity=2, unit_type="L")
    return lst, item


# ---------------------------------------------------------------------------
# Mode selection
# ---------------------------------------------------------------------------


class TestSelectMode:
    def test_new_list_with_pending_item_is_two_phase(self):
        lists = [ShoppingList(id=1, name="New")]
        items = [ShoppingItem(id=1, name="Milk", list_id=1)]
        assert select_mode(lists, items) == SyncMode.TWO_PHASE

    def test_new_list_without_items_is_standard(self):
        lists = [ShoppingList(id=1, name="Empty")]
        assert select_mode(lists, []) == SyncMode.STANDARD

    def test_list_with_server_id_is_standard(self):
        lists = [
            ShoppingList(
                id=1,
                name="Renamed",
                server_id=500,
                sync_status=SyncStatus.MODIFIED_LOCALLY,
            )
        ]
        items = [ShoppingItem(id=1, name="Milk", list_id=1)]
        assert select_mode(lists, items) == SyncMode.STANDARD

    def test_item_of_other_list_is_standard(self):
        lists = [ShoppingList(id=1, name="New")]
        items = [ShoppingItem(id=1, name="Milk", list_id=2)]
        assert select_mode(lists, items) == SyncMode.STANDARD

    def test_nothing_pending_is_standard(self):
        assert select_mode([], []) == SyncMode.STANDARD


# ---------------------------------------------------------------------------
# Two-phase sync
# ---------------------------------------------------------------------------


class TestTwoPhaseSync:
    def test_new_list_and_item_end_to_end(
        self, store, session, fake_client, list_with_item
    ):
        lst, item = list_with_item
        sleep = MagicMock()
        engine = _engine(
            store, fake_client, session, inter_phase_delay=0.2, sleep=sleep
        )

        report = engine.run()

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.mode == SyncMode.TWO_PHASE
        assert report.rpc_calls == 2
        sleep.assert_called_once_with(0.2)

        phase1, phase2 = fake_client.requests
        assert [r.name for r in phase1.shopping_lists] == ["Groceries"]
        assert phase1.shopping_items == []
        assert phase2.shopping_lists == []
        assert len(phase2.shopping_items) == 1
        assert phase2.shopping_items[0].shopping_list_id == 500

        local_list = store.lists.get(lst.id)
        local_item = store.items.get(item.id)
        assert local_list.server_id == 500
        assert local_list.sync_status == SyncStatus.SYNCED
        assert local_item.server_id == 900
        assert local_item.sync_status == SyncStatus.SYNCED
        assert session.last_sync == fake_client.clock

    def test_phases_recorded_in_order(
        self, store, session, fake_client, list_with_item
    ):
        report = _engine(store, fake_client, session).run()
        assert report.phases == [
            SyncPhase.IDLE,
            SyncPhase.ANALYZING,
            SyncPhase.TWO_PHASE_SYNC,
            SyncPhase.MERGING,
            SyncPhase.TWO_PHASE_SYNC,
            SyncPhase.MERGING,
            SyncPhase.DONE,
        ]

    def test_no_sleep_when_delay_is_zero(
        self, store, session, fake_client, list_with_item
    ):
        sleep = MagicMock()
        _engine(store, fake_client, session, sleep=sleep).run()
        sleep.assert_not_called()

    def test_items_deferred_when_list_not_echoed(
        self, store, session, fake_client, list_with_item
    ):
        lst, item = list_with_item
        fake_client.echo_lists = False

        report = _engine(store, fake_client, session).run()

        assert report.success
        assert report.deferred_items == 1
        assert report.sent_items == 0
        assert fake_client.requests[1].shopping_items == []
        local_item = store.items.get(item.id)
        assert local_item.server_id is None
        assert local_item.sync_status == SyncStatus.LOCAL_ONLY
        assert store.lists.get(lst.id).sync_status == SyncStatus.LOCAL_ONLY

    def test_phase_two_failure_keeps_phase_one_commit(
        self, store, session, make_client, list_with_item
    ):
        lst, item = list_with_item
        client = make_client(
            errors=[None, TransportError("connection reset")]
        )

        report = _engine(store, client, session).run()

        assert report.outcome == SyncOutcome.RETRYABLE_FAILURE
        assert report.phases[-1] == SyncPhase.FAILED
        assert store.lists.get(lst.id).server_id == 500
        assert store.lists.get(lst.id).sync_status == SyncStatus.SYNCED
        assert store.items.get(item.id).sync_status == SyncStatus.LOCAL_ONLY
        assert session.last_sync is None

        retry = _engine(store, client, session).run()

        assert retry.success
        assert retry.mode == SyncMode.STANDARD
        assert store.items.get(item.id).server_id == 900
        assert store.items.get(item.id).sync_status == SyncStatus.SYNCED


# ---------------------------------------------------------------------------
# Standard sync
# ---------------------------------------------------------------------------


class TestStandardSync:
    def test_second_run_converges(
        self, store, session, fake_client, list_with_item
    ):
        _engine(store, fake_client, session).run()
        report = _engine(store, fake_client, session).run()

        assert report.success
        assert report.mode == SyncMode.STANDARD
        assert report.sent_lists == report.sent_items == 0
        last = fake_client.requests[-1]
        assert last.shopping_lists == [] and last.shopping_items == []
        for entity in store.lists.list_all() + store.items.list_all():
            assert entity.sync_status == SyncStatus.SYNCED
            assert entity.server_id is not None

    def test_watermark_sent_on_next_request(
        self, store, session, fake_client, repo
    ):
        repo.create_list("Weekly")
        _engine(store, fake_client, session).run()
        first_timestamp = session.last_sync

        _engine(store, fake_client, session).run()

        assert first_timestamp is not None
        assert (
            fake_client.requests[-1].last_sync_timestamp == first_timestamp
        )

    def test_local_edit_is_uploaded(
        self, store, session, fake_client, repo, list_with_item
    ):
        _, item = list_with_item
        _engine(store, fake_client, session).run()

        repo.update_item(item.id, quantity=5)
        assert (
            store.items.get(item.id).sync_status
            == SyncStatus.MODIFIED_LOCALLY
        )

        report = _engine(store, fake_client, session).run()

        assert report.mode == SyncMode.STANDARD
        sent = fake_client.requests[-1].shopping_items
        assert [(r.id, r.quantity) for r in sent] == [(900, 5.0)]
        assert store.items.get(item.id).sync_status == SyncStatus.SYNCED

    def test_server_records_are_merged(self, store, session, fake_client):
        fake_client.extra_lists = [
            ShoppingListSync(id=77, name="From tablet", sync_id="remote-1")
        ]

        report = _engine(store, fake_client, session).run()

        assert report.merge.lists.inserted == 1
        merged = store.lists.find_by_sync_id("remote-1")
        assert merged.server_id == 77
        assert merged.sync_status == SyncStatus.SYNCED

    def test_deletions_sent_then_purged(
        self, store, session, fake_client, repo, list_with_item
    ):
        _, item = list_with_item
        _engine(store, fake_client, session).run()
        repo.delete_item(item.id)
        assert len(store.tombstones.list_unacknowledged()) == 1

        report = _engine(store, fake_client, session).run()

        assert report.sent_tombstones == 1
        deleted = fake_client.requests[-1].deleted_items
        assert [d.entity_type for d in deleted] == ["SHOPPING_ITEM"]
        assert fake_client.deleted == [item.sync_id]
        assert store.tombstones.list_all() == []

    def test_edit_during_request_stays_pending(
        self, store, session, fake_client, repo
    ):
        lst = repo.create_list("Weekly")
        _engine(store, fake_client, session).run()
        item = repo.add_item(lst.id, "Bread")
        fake_client.on_request = lambda request: repo.update_item(
            item.id, quantity=3
        )

        report = _engine(store, fake_client, session).run()

        assert report.success
        local = store.items.get(item.id)
        assert local.quantity == 3
        assert local.server_id == 900
        assert local.sync_status != SyncStatus.SYNCED

    def test_delete_during_request_is_not_restored(
        self, store, session, fake_client, repo, list_with_item
    ):
        _, item = list_with_item
        _engine(store, fake_client, session).run()
        repo.update_item(item.id, quantity=4)
        fake_client.on_request = lambda request: repo.delete_item(item.id)

        report = _engine(store, fake_client, session).run()

        assert report.success
        assert report.merge.items.skipped == 1
        assert store.items.list_all() == []
        pending = store.tombstones.list_unacknowledged()
        assert [t.sync_id for t in pending] == [item.sync_id]

        fake_client.on_request = None
        _engine(store, fake_client, session).run()

        assert fake_client.deleted == [item.sync_id]
        assert store.items.list_all() == []
        assert store.tombstones.list_all() == []

    def test_deleted_list_sends_item_and_list_tombstones(
        self, store, session, fake_client, repo, list_with_item
    ):
        lst, item = list_with_item
        _engine(store, fake_client, session).run()
        repo.delete_list(lst.id)

        report = _engine(store, fake_client, session).run()

        assert report.sent_tombstones == 2
        deleted = fake_client.requests[-1].deleted_items
        assert [d.entity_type for d in deleted] == [
            "SHOPPING_ITEM",
            "SHOPPING_LIST",
        ]
        assert fake_client.deleted == [item.sync_id, lst.sync_id]
        assert store.tombstones.list_all() == []
        assert store.lists.list_all() == []
        assert store.items.list_all() == []

    def test_session_change_callback_on_success(
        self, store, session, fake_client
    ):
        callback = MagicMock()
        _engine(
            store, fake_client, session, on_session_change=callback
        ).run()
        callback.assert_called_once_with(session)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_not_authenticated_is_fatal_without_request(
        self, store, session, fake_client, list_with_item
    ):
        fake_client.authenticated = False

        report = _engine(store, fake_client, session).run()

        assert report.outcome == SyncOutcome.FATAL_FAILURE
        assert fake_client.requests == []
        assert report.rpc_calls == 0

    @pytest.mark.parametrize(
        "error",
        [
            TransportError("timed out"),
            ServerError(500),
            MalformedResponseError("Empty response from server"),
        ],
    )
    def test_request_failure_is_retryable(
        self, store, session, make_client, repo, error
    ):
        lst = repo.create_list("Weekly")
        client = make_client(errors=[error])
        callback = MagicMock()

        report = _engine(
            store, client, session, on_session_change=callback
        ).run()

        assert report.outcome == SyncOutcome.RETRYABLE_FAILURE
        assert report.retryable
        assert report.error == str(error)
        assert store.lists.get(lst.id).sync_status == SyncStatus.LOCAL_ONLY
        assert session.last_sync is None
        callback.assert_not_called()

    def test_unexpected_error_is_retryable(
        self, store, session, make_client
    ):
        client = make_client(errors=[RuntimeError("bug")])
        report = _engine(store, client, session).run()
        assert report.outcome == SyncOutcome.RETRYABLE_FAILURE
        assert report.error.startswith("RuntimeError")

    def test_unauthorized_then_refresh_succeeds(
        self, store, session, make_client, repo
    ):
        repo.create_list("Weekly")
        client = make_client(errors=[UnauthorizedError()])

        report = _engine(store, client, session).run()

        assert report.success
        assert client.refresh_calls == 1
        assert report.rpc_calls == 2
        assert len(client.requests) == 2

    def test_unauthorized_twice_is_fatal(
        self, store, session, make_client
    ):
        client = make_client(
            errors=[UnauthorizedError(), UnauthorizedError()]
        )

        report = _engine(store, client, session).run()

        assert report.outcome == SyncOutcome.FATAL_FAILURE
        assert client.refresh_calls == 1
        assert client.logout_calls == 1
        assert len(client.requests) == 2

    def test_refresh_failure_is_fatal(self, store, session, make_client):
        client = make_client(errors=[UnauthorizedError()], refresh_ok=False)

        report = _engine(store, client, session).run()

        assert report.outcome == SyncOutcome.FATAL_FAILURE
        assert len(client.requests) == 1
        assert client.logout_calls == 1


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


class TestDryRun:
    def test_dry_run_sends_nothing(self, store, session, fake_client):
        lst = store.lists.insert(ShoppingList(name="Unsent"))

        report = _engine(store, fake_client, session).run(dry_run=True)

        assert report.dry_run
        assert report.success
        assert report.sent_lists == 1
        assert fake_client.requests == []
        local = store.lists.get(lst.id)
        assert local.sync_id is not None
        assert local.sync_status == SyncStatus.LOCAL_ONLY

    def test_dry_run_counts_deferred_items(
        self, store, session, fake_client, list_with_item
    ):
        report = _engine(store, fake_client, session).run(dry_run=True)
        assert report.mode == SyncMode.TWO_PHASE
        assert report.deferred_items == 1
        assert report.sent_items == 0

    def test_dry_run_does_not_need_login(
        self, store, session, fake_client
    ):
        fake_client.authenticated = False
        report = _engine(store, fake_client, session).run(dry_run=True)
        assert report.success
