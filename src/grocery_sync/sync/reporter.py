"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync attempts:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- what a sync would upload.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import KindStats, SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _kind_line(label: str, stats: KindStats) -> str:
    return (
        f"  {label:<7} {stats.inserted} inserted, "
        f"{stats.updated} updated, {stats.skipped} skipped"
    )


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    The merge section is only included when the server returned at least
    one record.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync {report.outcome.value}"
    if report.mode is not None:
        header += f" ({report.mode.value})"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Sent {report.sent_lists} lists, {report.sent_items} items, "
        f"{report.sent_stores} stores, "
        f"{report.sent_tombstones} deletions "
        f"in {report.rpc_calls} requests"
    )
    if report.deferred_items:
        lines.append(
            f"Deferred: {report.deferred_items} items "
            "(list not yet on server)"
        )
    lines.append("")

    merge = report.merge
    if merge.lists.total or merge.items.total or merge.stores.total:
        lines.append("Received from server:")
        lines.append(_kind_line("lists", merge.lists))
        lines.append(_kind_line("items", merge.items))
        lines.append(_kind_line("stores", merge.stores))
        lines.append("")

    if report.server_timestamp is not None:
        lines.append(f"Last sync: {report.server_timestamp}")
    if report.error:
        lines.append(f"Error: {report.error}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run report as a list of pending uploads.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines = ["DRY RUN -- No requests will be sent"]
    if report.mode is not None:
        lines.append(f"Mode: {report.mode.value}")
    lines.append("")

    pending = [
        ("lists", report.sent_lists),
        ("items", report.sent_items),
        ("stores", report.sent_stores),
        ("deletions", report.sent_tombstones),
    ]
    for label, count in pending:
        if count:
            lines.append(f"[UPLOAD] {count} {label}")
    if report.deferred_items:
        lines.append(
            f"[DEFER]  {report.deferred_items} items "
            "(sent after their list)"
        )

    if not any(count for _, count in pending) and not report.deferred_items:
        lines.append("No local changes pending.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with outcome, phases, sent counts and merge counters.
    """
    return {
        "outcome": report.outcome.value,
        "mode": report.mode.value if report.mode else None,
        "dry_run": report.dry_run,
        "phases": [p.value for p in report.phases],
        "rpc_calls": report.rpc_calls,
        "started_at": report.started_at.isoformat(),
        "completed_at": (
            report.completed_at.isoformat() if report.completed_at else None
        ),
        "server_timestamp": (
            report.server_timestamp.isoformat()
            if report.server_timestamp
            else None
        ),
        "sent": {
            "lists": report.sent_lists,
            "items": report.sent_items,
            "stores": report.sent_stores,
            "tombstones": report.sent_tombstones,
            "deferred_items": report.deferred_items,
        },
        "merge": report.merge.model_dump(),
        "error": report.error,
    }
