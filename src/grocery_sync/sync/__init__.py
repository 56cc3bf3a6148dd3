"""Offline-first synchronization of lists, items and stores.

Public API for reconciling the local store with the grocery server over
the single ``POST /api/sync`` endpoint.

Architecture
------------
Local entities are correlated with server records by a client-generated
stable id (``sync_id``).  Every entity carries a ``SyncStatus``; anything
not ``SYNCED`` is uploaded on the next cycle.  The server echoes its view
of every entity changed since the client's watermark; the client merges
that echo, marks what it sent as ``SYNCED`` and advances the watermark.

Modules:

- ``engine``     -- ``SyncEngine``: orchestrates one sync attempt.
- ``wire``       -- pydantic models of the JSON payloads.
- ``mapper``     -- ``WireMapper``: local entities to wire records.
- ``matcher``    -- ``ResponseMerger``: rule-based matching and merge.
- ``tombstones`` -- ``TombstoneTracker``: deletion propagation.
- ``auth``       -- ``AuthRetryGate``: refresh-once on 401.
- ``models``     -- ``SyncOutcome``, ``SyncMode``, ``SyncPhase``,
  ``MergeStats``, ``SyncReport``: result contracts.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from grocery_sync.core.client import SyncClient
    from grocery_sync.session import SessionStore
    from grocery_sync.store import SQLiteStore
    from grocery_sync.sync import SyncEngine, format_sync_report

    sessions = SessionStore(state_dir)
    session = sessions.load()
    client = SyncClient(config, session)

    engine = SyncEngine(
        store=SQLiteStore(config.db_path),
        client=client,
        session=session,
        on_session_change=sessions.save,
    )

    report = engine.run()
    print(format_sync_report(report))
"""

from .auth import AuthRetryGate
from .engine import SyncEngine, select_mode
from .mapper import WireMapper
from .matcher import ResponseMerger
from .models import (
    MergeStats,
    SyncMode,
    SyncOutcome,
    SyncPhase,
    SyncReport,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .tombstones import TombstoneTracker

__all__ = [
    "AuthRetryGate",
    "MergeStats",
    "ResponseMerger",
    "SyncEngine",
    "SyncMode",
    "SyncOutcome",
    "SyncPhase",
    "SyncReport",
    "TombstoneTracker",
    "WireMapper",
    "format_dry_run_preview",
    "format_sync_report",
    "report_to_json",
    "select_mode",
]
