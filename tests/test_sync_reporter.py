"""Tests for sync reporter formatting functions.

Covers:
- format_result single-line output
- format_batch_report sections and summary counts
- format_status counts and attention list
- result_to_json / report_to_json structure
"""

from __future__ import annotations

from datetime import datetime, timezone

from locale_sync.sync.models import (
    BatchReport,
    ReconcileResult,
    SyncLink,
    SyncOutcome,
    SyncSnapshot,
    SyncState,
)
from locale_sync.sync.reporter import (
    format_batch_report,
    format_result,
    format_status,
    report_to_json,
    result_to_json,
)

STARTED = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
COMPLETED = datetime(2026, 3, 1, 10, 1, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(
    outcome: SyncOutcome,
    source: int = 318,
    language: str = "en",
    target: int | None = 1001,
    error: str | None = None,
    state: SyncState | None = SyncState.SYNCED,
) -> ReconcileResult:
    return ReconcileResult(
        link_id=f"{source}:fa:{language}",
        source_document_id=source,
        target_language=language,
        outcome=outcome,
        state=state,
        target_document_id=target,
        error=error,
    )


def _make_report(results: list[ReconcileResult] | None = None) -> BatchReport:
    return BatchReport(
        results=results or [], started_at=STARTED, completed_at=COMPLETED
    )


class TestFormatResult:
    def test_success_line(self):
        assert (
            format_result(_result(SyncOutcome.CREATED))
            == "[CREATED] 318 (en) -> 1001"
        )

    def test_error_appended(self):
        line = format_result(
            _result(
                SyncOutcome.VALIDATION_FAILED,
                target=None,
                error="missing key 'title'",
                state=SyncState.FAILED,
            )
        )
        assert line == "[VALIDATION_FAILED] 318 (en): missing key 'title'"


class TestFormatBatchReport:
    """Tests for format_batch_report()."""

    def test_summary_line_counts(self):
        report = _make_report(
            [
                _result(SyncOutcome.CREATED),
                _result(SyncOutcome.UPDATED, language="ar"),
                _result(SyncOutcome.UNCHANGED, source=319),
                _result(SyncOutcome.CONFLICT, source=320, error="price drifted"),
            ]
        )
        output = format_batch_report(report)
        assert (
            "Reconciled 4 links: 1 created, 1 updated, 1 unchanged, 1 failed"
            in output
        )

    def test_sections_only_when_populated(self):
        output = format_batch_report(
            _make_report([_result(SyncOutcome.CREATED)])
        )
        assert "Created:" in output
        assert "Updated:" not in output
        assert "Conflicts:" not in output

    def test_conflict_section_shows_error(self):
        output = format_batch_report(
            _make_report(
                [_result(SyncOutcome.CONFLICT, error="Target drifted: price")]
            )
        )
        assert "Conflicts:" in output
        assert "Target drifted: price" in output

    def test_unchanged_shows_count_only(self):
        output = format_batch_report(
            _make_report(
                [_result(SyncOutcome.UNCHANGED, source=s) for s in (1, 2, 3)]
            )
        )
        assert "Unchanged: 3 links" in output
        assert "[UNCHANGED]" not in output

    def test_timestamps_in_output(self):
        output = format_batch_report(_make_report())
        assert "Started: 2026-03-01T10:00:00+00:00" in output
        assert "Completed: 2026-03-01T10:01:00+00:00" in output

    def test_empty_report_concise(self):
        output = format_batch_report(_make_report())
        assert "Reconciled 0 links" in output
        assert not output.endswith("\n")


class TestFormatStatus:
    def test_counts_and_total(self):
        output = format_status({"synced": 4, "failed": 1})
        assert "synced:" in output
        assert "total:       5" in output
        assert "Needs attention" not in output

    def test_attention_list(self):
        link = SyncLink(
            link_id="318:fa:en",
            source_document_id=318,
            source_language="fa",
            target_language="en",
        )
        snapshot = SyncSnapshot(
            link_id="318:fa:en",
            state=SyncState.FAILED,
            updated_at=STARTED,
            last_error="translator returned invalid JSON",
        )
        output = format_status({"failed": 1}, [(link, snapshot)])
        assert "Needs attention:" in output
        assert "318 (en) failed -- translator returned invalid JSON" in output


class TestJson:
    def test_result_to_json(self):
        entry = result_to_json(_result(SyncOutcome.UPDATED))
        assert entry == {
            "link_id": "318:fa:en",
            "source_document_id": 318,
            "target_language": "en",
            "outcome": "updated",
            "success": True,
            "state": "synced",
            "target_document_id": 1001,
        }

    def test_result_to_json_error(self):
        entry = result_to_json(
            _result(SyncOutcome.TRANSPORT_FAILED, error="503", state=None)
        )
        assert entry["success"] is False
        assert entry["state"] is None
        assert entry["error"] == "503"

    def test_report_counts_every_outcome(self):
        data = report_to_json(
            _make_report(
                [_result(SyncOutcome.CREATED), _result(SyncOutcome.BUSY)]
            )
        )
        assert set(data["counts"]) == {o.value for o in SyncOutcome} | {"total"}
        assert data["counts"]["created"] == 1
        assert data["counts"]["busy"] == 1
        assert data["counts"]["total"] == 2
        assert len(data["results"]) == 2
        assert data["started_at"] == "2026-03-01T10:00:00+00:00"

    def test_empty_report_json(self):
        data = report_to_json(BatchReport(started_at=STARTED))
        assert data["counts"]["total"] == 0
        assert data["completed_at"] is None
        assert data["results"] == []
