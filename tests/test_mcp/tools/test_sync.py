"""Tests for MCP sync tool definitions and handlers.

Covers:
- Tool definitions have valid schemas and the right permissions
- reconcile creates, then reports unchanged
- Argument validation becomes a validation_error response
- reconcile_batch with explicit items and with stored pending work
- sync_scan / sync_status / sync_reset_stale structured output

Handlers run through a ToolRegistry against in-memory collaborators.
"""

from __future__ import annotations

from datetime import timedelta

import mcp.types as types
import pytest

from locale_sync.core.exceptions import ValidationError
from locale_sync.mcp.tools.registry import SYNC_RUN, SYNC_VIEW, ToolRegistry
from locale_sync.mcp.tools.sync import MAX_BATCH_SIZE, SYNC_SPECS, SYNC_TOOLS
from locale_sync.sync.machine import utcnow
from locale_sync.sync.models import SyncSnapshot, SyncState, make_link_id

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def tools():
    return ToolRegistry(SYNC_SPECS)


async def _call(tools, runtime, name, **args) -> types.CallToolResult:
    return await tools.call_tool(name, args, runtime)


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


class TestToolDefinitions:
    def test_tool_names(self):
        assert [t.name for t in SYNC_TOOLS] == [
            "reconcile",
            "reconcile_batch",
            "sync_scan",
            "sync_status",
            "sync_reset_stale",
        ]

    def test_reconcile_schema(self):
        schema = SYNC_TOOLS[0].inputSchema
        assert schema["required"] == ["source_document_id", "target_language"]
        assert schema["properties"]["source_document_id"]["type"] == [
            "integer",
            "string",
        ]

    def test_permissions(self):
        permissions = {s.tool.name: s.permissions for s in SYNC_SPECS}
        assert permissions["sync_status"] == frozenset({SYNC_VIEW})
        assert all(
            p == frozenset({SYNC_RUN})
            for name, p in permissions.items()
            if name != "sync_status"
        )

    def test_all_tools_have_descriptions_and_annotations(self):
        for tool in SYNC_TOOLS:
            assert tool.description
            assert tool.annotations is not None
        status = next(t for t in SYNC_TOOLS if t.name == "sync_status")
        assert status.annotations.readOnlyHint is True


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


class TestReconcile:
    async def test_creates_then_unchanged(self, tools, sync_runtime):
        first = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        assert not first.isError
        assert first.structuredContent["outcome"] == "created"
        assert first.structuredContent["state"] == "synced"
        assert _text(first).startswith("[CREATED] 318 (en) -> ")

        second = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id="318", target_language="en",
        )
        assert second.structuredContent["outcome"] == "unchanged"
        assert (
            second.structuredContent["target_document_id"]
            == first.structuredContent["target_document_id"]
        )
        assert len(sync_runtime.repository.write_calls) == 1

    async def test_invalid_language(self, tools, sync_runtime):
        result = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="English",
        )
        assert result.isError
        assert "Error (validation_error)" in _text(result)
        assert sync_runtime.store.list_links() == []

    async def test_invalid_document_id(self, tools, sync_runtime):
        result = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=-1, target_language="en",
        )
        assert result.isError
        assert "must be positive" in _text(result)

    async def test_invalid_source_language(self, tools, sync_runtime):
        result = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en", source_language="",
        )
        assert result.isError

    async def test_failed_reconcile_is_a_result(self, tools, sync_runtime):
        """Engine failures come back as results, not tool errors."""
        sync_runtime.orchestrator.translator.responses = [
            ValidationError("not valid JSON")
        ] * 3
        result = await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        assert not result.isError
        assert result.structuredContent["outcome"] == "validation_failed"
        assert result.structuredContent["success"] is False
        assert result.structuredContent["state"] == "failed"


# ---------------------------------------------------------------------------
# reconcile_batch
# ---------------------------------------------------------------------------


class TestReconcileBatch:
    async def test_explicit_items(self, tools, sync_runtime):
        result = await _call(
            tools, sync_runtime, "reconcile_batch",
            items=[
                {"source_document_id": 318, "target_language": "en"},
                {"source_document_id": 318, "target_language": "ar"},
            ],
        )
        counts = result.structuredContent["counts"]
        assert counts["created"] == 2
        assert counts["total"] == 2
        assert [r["target_language"] for r in result.structuredContent["results"]] == [
            "en",
            "ar",
        ]
        assert "Reconciled 2 links: 2 created" in _text(result)

    async def test_nothing_to_do(self, tools, sync_runtime):
        result = await _call(tools, sync_runtime, "reconcile_batch")
        assert _text(result) == "Nothing to reconcile."
        assert result.structuredContent["counts"]["total"] == 0

    async def test_bad_item_rejects_whole_batch(self, tools, sync_runtime):
        result = await _call(
            tools, sync_runtime, "reconcile_batch",
            items=[
                {"source_document_id": 318, "target_language": "en"},
                {"source_document_id": 318},
            ],
        )
        assert result.isError
        assert sync_runtime.repository.write_calls == []

    async def test_batch_size_limit(self, tools, sync_runtime):
        items = [
            {"source_document_id": i, "target_language": "en"}
            for i in range(1, MAX_BATCH_SIZE + 2)
        ]
        result = await _call(tools, sync_runtime, "reconcile_batch", items=items)
        assert result.isError
        assert f"exceeds maximum {MAX_BATCH_SIZE}" in _text(result)

    async def test_pending_work_after_scan(self, tools, sync_runtime):
        """Without items, the batch picks up what the scan marked."""
        await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        sync_runtime.repository.edit_document(318, "fa", fields={"price": "1500"})

        scan = await _call(tools, sync_runtime, "sync_scan")
        assert scan.structuredContent["count"] == 1

        result = await _call(tools, sync_runtime, "reconcile_batch")
        assert result.structuredContent["counts"]["updated"] == 1
        target_id = result.structuredContent["results"][0]["target_document_id"]
        target = sync_runtime.repository.get_document(target_id, "en")
        assert target.fields["price"] == "1500"


# ---------------------------------------------------------------------------
# sync_scan / sync_status / sync_reset_stale
# ---------------------------------------------------------------------------


class TestMaintenanceTools:
    async def test_scan_nothing_changed(self, tools, sync_runtime):
        await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        scan = await _call(tools, sync_runtime, "sync_scan")
        assert scan.structuredContent == {"marked": [], "count": 0}

    async def test_scan_restricted_to_link_ids(self, tools, sync_runtime):
        await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        sync_runtime.repository.edit_document(318, "fa", title="خانه")
        scan = await _call(
            tools, sync_runtime, "sync_scan",
            link_ids=[make_link_id(318, "ar")],
        )
        assert scan.structuredContent["count"] == 0

    async def test_status_counts_and_attention(self, tools, sync_runtime):
        await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="en",
        )
        sync_runtime.orchestrator.translator.responses = [{"title": "only"}] * 3
        await _call(
            tools, sync_runtime, "reconcile",
            source_document_id=318, target_language="ar",
        )

        result = await _call(tools, sync_runtime, "sync_status")
        data = result.structuredContent
        assert data["counts"]["synced"] == 1
        assert data["counts"]["failed"] == 1
        assert len(data["attention"]) == 1
        entry = data["attention"][0]
        assert entry["target_language"] == "ar"
        assert entry["state"] == "failed"
        assert entry["last_outcome"] == "validation_failed"
        assert entry["last_error"]
        assert data["policies"]["city_ref"] == "copy-relationship"
        assert "Needs attention:" in _text(result)

    async def test_reset_stale_nothing_pending(self, tools, sync_runtime):
        result = await _call(tools, sync_runtime, "sync_reset_stale")
        assert result.structuredContent == {"reclaimed": [], "count": 0}

    async def test_reset_stale_reclaims_abandoned(self, tools, sync_runtime):
        link_id = make_link_id(318, "en")
        sync_runtime.store.put(
            SyncSnapshot(
                link_id=link_id,
                state=SyncState.PENDING,
                updated_at=utcnow() - timedelta(days=1),
            )
        )
        result = await _call(tools, sync_runtime, "sync_reset_stale")
        assert result.structuredContent["reclaimed"] == [link_id]
        assert sync_runtime.store.get(link_id).state == SyncState.FAILED
