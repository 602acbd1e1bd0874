"""MCP tool handlers for content reconciliation.

Defines five tools:

- ``reconcile`` -- reconcile one source document into one language.
- ``reconcile_batch`` -- reconcile many links in parallel (explicit list,
  or everything the store says needs work).
- ``sync_scan`` -- mark synced links whose source changed as out of sync.
- ``sync_status`` -- snapshot counts and links needing attention.
- ``sync_reset_stale`` -- reclaim abandoned pending links.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...core.async_utils import gather_limited, run_sync, run_sync_limited
from ...sync.machine import utcnow
from ...sync.models import BatchReport, ReconcileResult, SyncState
from ...sync.reporter import (
    format_batch_report,
    format_result,
    format_status,
    report_to_json,
    result_to_json,
)
from ...validators import (
    normalize_document_id,
    validate_document_id,
    validate_language_code,
)
from .errors import build_error_response
from .registry import SYNC_RUN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ..lifespan import SyncRuntime

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500

_ID_SCHEMA = {
    "type": ["integer", "string"],
    "description": "Source document id",
}
_LANG_SCHEMA = {
    "type": "string",
    "description": "Target language code (e.g. 'en', 'pt-BR')",
}


def _checked_link_args(args: dict[str, Any]) -> tuple[int | str, str]:
    """Validate and normalize a (source_document_id, target_language) pair.

    Raises:
        ValueError: With the first problem found.
    """
    document_id = args.get("source_document_id")
    ok, reason = validate_document_id(document_id)
    if not ok:
        raise ValueError(reason)
    language = args.get("target_language")
    ok, reason = validate_language_code(language)
    if not ok:
        raise ValueError(reason)
    return normalize_document_id(document_id), language


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_reconcile(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle the ``reconcile`` tool."""
    document_id, language = _checked_link_args(args)
    source_language = args.get("source_language")
    if source_language is not None:
        ok, reason = validate_language_code(source_language)
        if not ok:
            raise ValueError(reason)

    result: ReconcileResult = await run_sync_limited(
        runtime.orchestrator.reconcile, document_id, language, source_language
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_result(result))],
        structuredContent=result_to_json(result),
    )


async def _handle_reconcile_batch(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle the ``reconcile_batch`` tool."""
    items = args.get("items")
    if items:
        pairs = [_checked_link_args(item) for item in items]
    else:
        pairs = await run_sync(
            runtime.orchestrator.pending_work,
            bool(args.get("include_failed", False)),
        )

    if not pairs:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text", text="Nothing to reconcile."
                )
            ],
            structuredContent={"counts": {"total": 0}, "results": []},
        )

    if len(pairs) > MAX_BATCH_SIZE:
        return build_error_response(
            "validation_error",
            f"Batch size {len(pairs)} exceeds maximum {MAX_BATCH_SIZE}. Split into smaller batches.",
            "Pass an explicit 'items' list with fewer links.",
        )

    started_at = utcnow()
    results = await gather_limited(
        [
            run_sync_limited(runtime.orchestrator.reconcile, doc_id, lang)
            for doc_id, lang in pairs
        ]
    )
    report = BatchReport(
        results=results, started_at=started_at, completed_at=utcnow()
    )
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_batch_report(report))
        ],
        structuredContent=report_to_json(report),
    )


async def _handle_sync_scan(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_scan`` tool."""
    link_ids = args.get("link_ids") or None
    marked = await run_sync_limited(runtime.orchestrator.scan, link_ids)

    lines = [f"Scan complete: {len(marked)} link(s) marked out of sync."]
    for link in marked:
        lines.append(f"  - {link.source_document_id} ({link.target_language})")
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={
            "marked": [
                {
                    "link_id": link.link_id,
                    "source_document_id": link.source_document_id,
                    "target_language": link.target_language,
                }
                for link in marked
            ],
            "count": len(marked),
        },
    )


async def _handle_sync_status(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    store = runtime.store
    counts = await run_sync(store.counts_by_state)

    attention = []
    for state in (SyncState.FAILED, SyncState.OUT_OF_SYNC):
        for snapshot in store.list_by_state(state):
            link = store.get_link(snapshot.link_id)
            if link is not None:
                attention.append((link, snapshot))

    structured = {
        "counts": counts,
        "attention": [
            {
                "link_id": link.link_id,
                "source_document_id": link.source_document_id,
                "target_language": link.target_language,
                "target_document_id": link.target_document_id,
                "state": snapshot.state.value,
                "last_outcome": snapshot.last_outcome.value
                if snapshot.last_outcome
                else None,
                "last_error": snapshot.last_error,
                "updated_at": snapshot.updated_at.isoformat(),
            }
            for link, snapshot in attention
        ],
        "policies": runtime.orchestrator.registry.as_dict(),
    }
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_status(counts, attention))
        ],
        structuredContent=structured,
    )


async def _handle_sync_reset_stale(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle the ``sync_reset_stale`` tool."""
    reclaimed = await run_sync(runtime.orchestrator.reset_stale_pending)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Reclaimed {len(reclaimed)} abandoned pending link(s).",
            )
        ],
        structuredContent={"reclaimed": reclaimed, "count": len(reclaimed)},
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="reconcile",
            description=(
                "Bring the target-language translation of a source document "
                "in sync. Creates the translation if it does not exist, "
                "updates it if the source changed, and does nothing if it is "
                "already in sync."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "source_document_id": _ID_SCHEMA,
                    "target_language": _LANG_SCHEMA,
                    "source_language": {
                        "type": "string",
                        "description": "Source language (defaults to sync.source_language)",
                    },
                },
                "required": ["source_document_id", "target_language"],
            },
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_reconcile,
    ),
    ToolSpec(
        tool=types.Tool(
            name="reconcile_batch",
            description=(
                "Reconcile many links in parallel. Pass 'items', or omit it "
                "to reconcile every out-of-sync and never-completed link. "
                f"Best-effort: per-link results reported. Max {MAX_BATCH_SIZE} links."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "source_document_id": _ID_SCHEMA,
                                "target_language": _LANG_SCHEMA,
                            },
                            "required": [
                                "source_document_id",
                                "target_language",
                            ],
                        },
                    },
                    "include_failed": {
                        "type": "boolean",
                        "default": False,
                        "description": "Also retry failed links when 'items' is omitted",
                    },
                },
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_reconcile_batch,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_scan",
            description=(
                "Check synced links for source changes and mark changed ones "
                "out of sync. Reads the repository only; writes nothing to it."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "link_ids": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Restrict the scan to these link ids",
                    },
                },
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_scan,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_status",
            description=(
                "Show link counts per sync state, the failed and out-of-sync "
                "links with their last error, and the configured field policies."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=True,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=False,
            ),
            inputSchema={
                "type": "object",
                "properties": {},
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_status,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_reset_stale",
            description=(
                "Mark pending links older than the liveness window as failed "
                "so they can be retried."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=False,
            ),
            inputSchema={
                "type": "object",
                "properties": {},
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_reset_stale,
    ),
]

SYNC_TOOLS: list[types.Tool] = [spec.tool for spec in SYNC_SPECS]
