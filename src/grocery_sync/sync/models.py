"""Pydantic models describing the outcome of a sync run.

Defines the result contracts shared by the engine, the reporter and the
CLI:

- ``SyncOutcome``: tri-state result handed to the scheduler.
- ``SyncMode``: single-phase or two-phase strategy.
- ``SyncPhase``: states of the orchestrator state machine.
- ``MergeStats``: per-kind counters filled while merging a response.
- ``SyncReport``: aggregate report for one sync attempt.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncOutcome(str, Enum):
    """Result of a sync attempt, as seen by the scheduler."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class SyncMode(str, Enum):
    """Upload strategy chosen while analyzing pending changes."""

    STANDARD = "standard"
    TWO_PHASE = "two_phase"


class SyncPhase(str, Enum):
    """States of the sync orchestrator."""

    IDLE = "idle"
    ANALYZING = "analyzing"
    STANDARD_SYNC = "standard_sync"
    TWO_PHASE_SYNC = "two_phase_sync"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


class KindStats(BaseModel):
    """Merge counters for one entity kind."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped


class MergeStats(BaseModel):
    """Merge counters for all entity kinds.

    Mutable: the merger increments counters while it walks a response.
    """

    lists: KindStats = Field(default_factory=KindStats)
    items: KindStats = Field(default_factory=KindStats)
    stores: KindStats = Field(default_factory=KindStats)

    def add(self, other: MergeStats) -> None:
        """Accumulate *other* into this instance."""
        for name in ("lists", "items", "stores"):
            mine = getattr(self, name)
            theirs = getattr(other, name)
            mine.inserted += theirs.inserted
            mine.updated += theirs.updated
            mine.skipped += theirs.skipped


class SyncReport(BaseModel):
    """Aggregate report for one sync attempt.

    Attributes:
        outcome: Tri-state result.
        mode: Strategy chosen in ``ANALYZING`` (``None`` if the run failed
            before analysis).
        phases: States traversed, in order.
        rpc_calls: Number of ``synchronize`` requests issued, auth
            retries included.
        sent_lists: Lists included in a successful request.
        sent_items: Items included in a successful request.
        sent_stores: Stores included in a successful request.
        sent_tombstones: Tombstones acknowledged by the server.
        deferred_items: Pending items left for the next cycle.
        merge: Counters from merging the server responses.
        server_timestamp: New watermark (set on success only).
        error: Error message on failure.
        dry_run: Whether network calls were skipped.
        started_at: When the attempt started.
        completed_at: When the attempt finished.
    """

    outcome: SyncOutcome
    mode: SyncMode | None = None
    phases: list[SyncPhase] = []
    rpc_calls: int = 0
    sent_lists: int = 0
    sent_items: int = 0
    sent_stores: int = 0
    sent_tombstones: int = 0
    deferred_items: int = 0
    merge: MergeStats = Field(default_factory=MergeStats)
    server_timestamp: datetime | None = None
    error: str | None = None
    dry_run: bool = False
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.outcome == SyncOutcome.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.outcome == SyncOutcome.RETRYABLE_FAILURE

    def summary(self) -> str:
        """Format a one-paragraph summary of the attempt.

        Returns:
            Multi-line summary string with counts.
        """
        lines = [
            f"Sync {self.outcome.value}"
            + (f" ({self.mode.value})" if self.mode else "")
            + (" (dry run)" if self.dry_run else ""),
            f"  Requests:   {self.rpc_calls}",
            f"  Lists:      {self.sent_lists}",
            f"  Items:      {self.sent_items}",
            f"  Stores:     {self.sent_stores}",
            f"  Deletions:  {self.sent_tombstones}",
            f"  Deferred:   {self.deferred_items}",
        ]
        if self.error:
            lines.append(f"  Error:      {self.error}")
        return "\n".join(lines)
