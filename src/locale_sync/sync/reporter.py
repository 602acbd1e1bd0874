"""Reconciliation report formatting functions.

Provides human-readable and machine-readable output:

- ``format_result`` -- one line per reconciled link.
- ``format_batch_report`` -- post-batch summary grouped by outcome.
- ``format_status`` -- snapshot counts plus links needing attention.
- ``result_to_json`` / ``report_to_json`` -- structured dicts for MCP
  tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import SyncOutcome

if TYPE_CHECKING:
    from .models import BatchReport, ReconcileResult, SyncLink, SyncSnapshot


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_result(result: ReconcileResult) -> str:
    """Format one reconciliation result as a single line."""
    target = (
        f" -> {result.target_document_id}"
        if result.target_document_id is not None
        else ""
    )
    line = (
        f"[{result.outcome.value.upper()}] "
        f"{result.source_document_id} ({result.target_language}){target}"
    )
    if result.error:
        line += f": {result.error}"
    return line


def format_batch_report(report: BatchReport) -> str:
    """Format a batch report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged links are summarised by count only.
    """
    lines: list[str] = []
    lines.append("Reconciliation report")
    lines.append(f"Started: {_iso(report.started_at)}")
    if report.completed_at:
        lines.append(f"Completed: {_iso(report.completed_at)}")
    lines.append("")

    total = len(report.results)
    lines.append(
        f"Reconciled {total} links: "
        f"{len(report.created)} created, {len(report.updated)} updated, "
        f"{len(report.unchanged)} unchanged, {len(report.failed)} failed"
    )
    lines.append("")

    sections = [
        (SyncOutcome.CREATED, "Created:"),
        (SyncOutcome.UPDATED, "Updated:"),
        (SyncOutcome.BUSY, "Busy (already in progress):"),
        (SyncOutcome.CONFLICT, "Conflicts:"),
        (SyncOutcome.VALIDATION_FAILED, "Validation failures:"),
        (SyncOutcome.TRANSPORT_FAILED, "Transport failures:"),
        (SyncOutcome.SUPERSEDED, "Superseded:"),
    ]
    for outcome, title in sections:
        results = report.with_outcome(outcome)
        if not results:
            continue
        lines.append(title)
        for r in results:
            lines.append(f"  {format_result(r)}")
        lines.append("")

    if report.unchanged:
        lines.append(f"Unchanged: {len(report.unchanged)} links")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_status(
    counts: dict[str, int],
    attention: list[tuple[SyncLink, SyncSnapshot]] | None = None,
) -> str:
    """Format snapshot counts and the links that need an operator.

    Args:
        counts: Output of ``SnapshotStore.counts_by_state()``.
        attention: Failed / out-of-sync links with their snapshots.
    """
    lines = ["Sync status"]
    for state, count in counts.items():
        lines.append(f"  {state + ':':<13}{count}")
    lines.append(f"  {'total:':<13}{sum(counts.values())}")

    if attention:
        lines.append("")
        lines.append("Needs attention:")
        for link, snapshot in attention:
            detail = f" -- {snapshot.last_error}" if snapshot.last_error else ""
            lines.append(
                f"  {link.source_document_id} ({link.target_language}) "
                f"{snapshot.state.value}{detail}"
            )

    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: ReconcileResult) -> dict:
    """Convert one result to a structured dict for JSON serialisation."""
    entry: dict = {
        "link_id": result.link_id,
        "source_document_id": result.source_document_id,
        "target_language": result.target_language,
        "outcome": result.outcome.value,
        "success": result.success,
        "state": result.state.value if result.state else None,
        "target_document_id": result.target_document_id,
    }
    if result.error:
        entry["error"] = result.error
    return entry


def report_to_json(report: BatchReport) -> dict:
    """Convert a batch report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    counts = {outcome.value: 0 for outcome in SyncOutcome}
    for r in report.results:
        counts[r.outcome.value] += 1
    counts["total"] = len(report.results)

    return {
        "started_at": _iso(report.started_at),
        "completed_at": _iso(report.completed_at),
        "counts": counts,
        "results": [result_to_json(r) for r in report.results],
    }
