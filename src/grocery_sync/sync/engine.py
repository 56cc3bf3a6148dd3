"""Sync orchestrator that drives one synchronization attempt.

The ``SyncEngine`` ties together the mapper, the auth gate, the response
merger and the tombstone tracker.  One attempt walks this state machine::

    IDLE -> ANALYZING -> STANDARD_SYNC  -> MERGING -> DONE
                      -> TWO_PHASE_SYNC -> MERGING -> TWO_PHASE_SYNC
                                        -> MERGING -> DONE
    (any state) -> FAILED

``ANALYZING`` picks the strategy with ``select_mode()``: an item cannot be
sent while its list has no server id, so a pending list without server id
that owns pending items forces a two-phase upload (lists first, then
items, stores and deletions).

Units of commit are the completed phase and the watermark update:

* nothing is marked ``SYNCED`` before a response arrived;
* phase 1 commits list server ids even if phase 2 later fails;
* the watermark advances only after the last phase succeeded.

Request-level failures end the attempt with a ``SyncOutcome``; the engine
never lets an exception escape ``run()``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from grocery_sync.exceptions import (
    NotAuthenticatedError,
    RpcError,
    SessionExpiredError,
)
from grocery_sync.models import (
    ShoppingItem,
    ShoppingList,
    SyncStatus,
    utcnow,
)
from grocery_sync.session import Session
from grocery_sync.store.base import EntityStore, LocalStore
from grocery_sync.sync.auth import AuthCapability, AuthRetryGate
from grocery_sync.sync.mapper import MappedBatch, WireMapper
from grocery_sync.sync.matcher import ResponseMerger
from grocery_sync.sync.models import (
    MergeStats,
    SyncMode,
    SyncOutcome,
    SyncPhase,
    SyncReport,
)
from grocery_sync.sync.tombstones import TombstoneTracker
from grocery_sync.sync.wire import (
    ShoppingListSync,
    SyncRequest,
    SyncResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_INTER_PHASE_DELAY = 0.2


class SyncTransport(Protocol):
    """The single RPC the engine needs."""

    def synchronize(self, request: SyncRequest) -> SyncResponse:
        ...  # pragma: no cover


def select_mode(
    pending_lists: list[ShoppingList],
    pending_items: list[ShoppingItem],
) -> SyncMode:
    """Choose the upload strategy.

    Args:
        pending_lists: Lists whose status is not ``SYNCED``.
        pending_items: Items whose status is not ``SYNCED``.

    Returns:
        ``TWO_PHASE`` if a pending list without server id owns at least
        one pending item, ``STANDARD`` otherwise.
    """
    unsent = {
        lst.id for lst in pending_lists if lst.server_id is None
    }
    if any(item.list_id in unsent for item in pending_items):
        return SyncMode.TWO_PHASE
    return SyncMode.STANDARD


def _in_flight(*batches: MappedBatch) -> dict:
    """Map the stable id of every sent entity to its sent ``updated_at``."""
    return {
        entity.sync_id: entity.updated_at
        for batch in batches
        for entity in batch.sources
    }


class _Attempt:
    """Mutable bookkeeping for one ``run()``; frozen into a report."""

    def __init__(self, dry_run: bool) -> None:
        self.started_at = utcnow()
        self.dry_run = dry_run
        self.mode: SyncMode | None = None
        self.phases: list[SyncPhase] = []
        self.gate: AuthRetryGate | None = None
        self.sent_lists = 0
        self.sent_items = 0
        self.sent_stores = 0
        self.sent_tombstones = 0
        self.deferred_items = 0
        self.merge = MergeStats()
        self.server_timestamp = None

    def enter(self, phase: SyncPhase) -> None:
        previous = self.phases[-1].value if self.phases else "-"
        logger.debug("Sync state %s -> %s", previous, phase.value)
        self.phases.append(phase)

    def report(
        self, outcome: SyncOutcome, error: str | None = None
    ) -> SyncReport:
        return SyncReport(
            outcome=outcome,
            mode=self.mode,
            phases=list(self.phases),
            rpc_calls=self.gate.attempts if self.gate else 0,
            sent_lists=self.sent_lists,
            sent_items=self.sent_items,
            sent_stores=self.sent_stores,
            sent_tombstones=self.sent_tombstones,
            deferred_items=self.deferred_items,
            merge=self.merge,
            server_timestamp=self.server_timestamp,
            error=error,
            dry_run=self.dry_run,
            started_at=self.started_at,
            completed_at=utcnow(),
        )


class SyncEngine:
    """Run synchronization attempts against one local store.

    Args:
        store: The local entity store.
        client: Transport exposing ``synchronize(request)``.
        session: Session holding the watermark (``last_sync``).
        auth: Token refresh capability.  Defaults to *client*, which is
            the case for ``SyncClient``.
        inter_phase_delay: Seconds to wait between the two phases of a
            two-phase sync, so freshly created lists are visible on the
            server.  ``0`` disables the wait.
        on_session_change: Called with the session after the watermark
            moved, typically ``SessionStore.save``.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        store: LocalStore,
        client: SyncTransport,
        session: Session,
        auth: AuthCapability | None = None,
        inter_phase_delay: float = DEFAULT_INTER_PHASE_DELAY,
        on_session_change: Callable[[Session], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.session = session
        if auth is None:
            auth = client  # type: ignore[assignment]
        self.auth: AuthCapability = auth
        self.inter_phase_delay = inter_phase_delay
        self.on_session_change = on_session_change
        self._sleep = sleep

        self.tombstones = TombstoneTracker(store.tombstones)
        self.merger = ResponseMerger(store)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncReport:
        """Execute one synchronization attempt.

        Args:
            dry_run: If ``True``, analyze and build payloads (assigning
                missing stable ids) without contacting the server.

        Returns:
            A ``SyncReport``; its ``outcome`` tells the scheduler whether
            to retry.
        """
        attempt = _Attempt(dry_run)
        attempt.enter(SyncPhase.IDLE)

        try:
            if not dry_run and not self.auth.is_authenticated():
                raise NotAuthenticatedError("User not logged in")

            attempt.enter(SyncPhase.ANALYZING)
            attempt.mode = self.analyze()
            logger.info("Starting %s sync", attempt.mode.value)

            if dry_run:
                self._preview(attempt)
                attempt.enter(SyncPhase.DONE)
                return attempt.report(SyncOutcome.SUCCESS)

            attempt.gate = AuthRetryGate(self.auth)
            if attempt.mode == SyncMode.TWO_PHASE:
                self._run_two_phase(attempt)
            else:
                self._run_standard(attempt)

            attempt.enter(SyncPhase.DONE)
            logger.info(
                "Synchronization completed (%d requests)",
                attempt.gate.attempts,
            )
            return attempt.report(SyncOutcome.SUCCESS)

        except (NotAuthenticatedError, SessionExpiredError) as exc:
            logger.error("Synchronization aborted: %s", exc)
            attempt.enter(SyncPhase.FAILED)
            return attempt.report(SyncOutcome.FATAL_FAILURE, str(exc))
        except RpcError as exc:
            logger.error("Synchronization failed: %s", exc)
            attempt.enter(SyncPhase.FAILED)
            return attempt.report(SyncOutcome.RETRYABLE_FAILURE, str(exc))
        except Exception as exc:
            logger.exception("Unexpected synchronization error")
            attempt.enter(SyncPhase.FAILED)
            return attempt.report(
                SyncOutcome.RETRYABLE_FAILURE,
                f"{type(exc).__name__}: {exc}",
            )

    def analyze(self) -> SyncMode:
        """Pick the strategy for the current pending changes."""
        return select_mode(
            self.store.lists.list_pending_sync(),
            self.store.items.list_pending_sync(),
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _run_standard(self, attempt: _Attempt) -> None:
        """Upload everything pending in a single request."""
        attempt.enter(SyncPhase.STANDARD_SYNC)
        mapper = WireMapper(self.store, self.session.last_sync)
        lists = mapper.map_lists()
        items = mapper.map_items()
        stores = mapper.map_stores()
        tombstones = self.tombstones.pending_tombstones()

        request = SyncRequest(
            last_sync_timestamp=self.session.last_sync,
            shopping_lists=lists.records,
            shopping_items=items.records,
            store_locations=stores.records,
            deleted_items=mapper.map_tombstones(tombstones),
        )
        attempt.deferred_items = len(items.deferred)
        response = attempt.gate.call(self.client.synchronize, request)

        attempt.enter(SyncPhase.MERGING)
        attempt.merge.add(
            self.merger.merge(response, _in_flight(lists, items, stores))
        )
        self._mark_synced(self.store.lists, lists)
        self._mark_synced(self.store.items, items)
        self._mark_synced(self.store.stores, stores)
        self._finalize_tombstones([t.id for t in tombstones])

        attempt.sent_lists = len(lists)
        attempt.sent_items = len(items)
        attempt.sent_stores = len(stores)
        attempt.sent_tombstones = len(tombstones)
        self._commit_watermark(attempt, response)

    def _run_two_phase(self, attempt: _Attempt) -> None:
        """Upload lists first, then items, stores and deletions."""
        # Phase 1: lists only, to obtain their server ids.
        attempt.enter(SyncPhase.TWO_PHASE_SYNC)
        mapper = WireMapper(self.store, self.session.last_sync)
        lists = mapper.map_lists()
        request = SyncRequest(
            last_sync_timestamp=self.session.last_sync,
            shopping_lists=lists.records,
        )
        response = attempt.gate.call(self.client.synchronize, request)

        attempt.enter(SyncPhase.MERGING)
        linked = self._apply_list_ids(response.shopping_lists, lists)
        attempt.sent_lists = len(lists)
        logger.info(
            "Phase 1 complete: %d of %d lists have a server id",
            linked,
            len(lists),
        )

        if self.inter_phase_delay > 0:
            self._sleep(self.inter_phase_delay)

        # Phase 2: re-read items; those whose list is still unsent wait
        # for the next cycle.
        attempt.enter(SyncPhase.TWO_PHASE_SYNC)
        items = mapper.map_items()
        stores = mapper.map_stores()
        tombstones = self.tombstones.pending_tombstones()
        if items.deferred:
            logger.warning(
                "Deferring %d items whose list has no server id",
                len(items.deferred),
            )
        attempt.deferred_items = len(items.deferred)

        request = SyncRequest(
            last_sync_timestamp=self.session.last_sync,
            shopping_items=items.records,
            store_locations=stores.records,
            deleted_items=mapper.map_tombstones(tombstones),
        )
        response = attempt.gate.call(self.client.synchronize, request)

        attempt.enter(SyncPhase.MERGING)
        attempt.merge.add(
            self.merger.merge(response, _in_flight(items, stores))
        )
        self._mark_synced(self.store.items, items)
        self._mark_synced(self.store.stores, stores)
        self._finalize_tombstones([t.id for t in tombstones])

        attempt.sent_items = len(items)
        attempt.sent_stores = len(stores)
        attempt.sent_tombstones = len(tombstones)
        self._commit_watermark(attempt, response)

    def _preview(self, attempt: _Attempt) -> None:
        """Fill *attempt* with what a real run would send first."""
        mapper = WireMapper(self.store, self.session.last_sync)
        items = mapper.map_items()
        attempt.sent_lists = len(mapper.map_lists())
        attempt.sent_items = len(items)
        attempt.deferred_items = len(items.deferred)
        attempt.sent_stores = len(mapper.map_stores())
        attempt.sent_tombstones = len(self.tombstones.pending_tombstones())

    # ------------------------------------------------------------------
    # Commit helpers
    # ------------------------------------------------------------------

    def _apply_list_ids(
        self,
        records: list[ShoppingListSync],
        sent: MappedBatch[ShoppingList, ShoppingListSync],
    ) -> int:
        """Write server ids of phase-1 lists back to their local rows.

        Lists edited after the snapshot get their server id but stay
        pending, so the edit is uploaded next cycle.
        """
        snapshot = {lst.sync_id: lst.updated_at for lst in sent.sources}
        linked = 0
        for record in records:
            if not record.sync_id or record.id is None:
                continue
            local = self.store.lists.find_by_sync_id(record.sync_id)
            if local is None:
                continue
            update: dict = {"server_id": record.id}
            sent_at = snapshot.get(record.sync_id, local.updated_at)
            if sent_at == local.updated_at:
                update["sync_status"] = SyncStatus.SYNCED
            self.store.lists.update(local.model_copy(update=update))
            linked += 1
        return linked

    @staticmethod
    def _mark_synced(
        table: EntityStore, batch: MappedBatch
    ) -> None:
        """Mark the sent entities ``SYNCED`` unless edited meanwhile."""
        for sent in batch.sources:
            current = table.get(sent.id)
            if current is None or current.is_synced:
                continue
            if current.updated_at != sent.updated_at:
                logger.debug(
                    "%s %s changed during sync, keeping it pending",
                    type(current).__name__,
                    current.id,
                )
                continue
            table.set_sync_status(sent.sync_id, SyncStatus.SYNCED)

    def _finalize_tombstones(self, ids: list[int]) -> None:
        self.tombstones.acknowledge(ids)
        self.tombstones.purge()

    def _commit_watermark(
        self, attempt: _Attempt, response: SyncResponse
    ) -> None:
        self.session.last_sync = response.server_timestamp
        attempt.server_timestamp = response.server_timestamp
        logger.info("Last sync: %s", response.server_timestamp)
        if self.on_session_change is not None:
            self.on_session_change(self.session)
