"""Multilingual content reconciliation engine.

Keeps the translated variants of structured content documents in step
with their source-language document.

Architecture
------------
Each (source document, target language) pair is a ``SyncLink`` with one
durable ``SyncSnapshot``.  A link is reconciled by comparing the source's
canonical content hash with the snapshot; only changed sources are
translated, and only translate-policy fields ever reach the translator.
Copy and copy-relationship fields go to the target untouched.

Modules:

- ``engine``    -- ``ReconciliationOrchestrator``: runs one reconciliation.
- ``policy``    -- ``FieldPolicyRegistry``: field name -> policy lookup.
- ``store``     -- ``SnapshotStore``: links and snapshots, JSON-persisted.
- ``detector``  -- canonical content hashing and change detection.
- ``applier``   -- translation requests, response validation, merge.
- ``machine``   -- ``SyncStateMachine``: the legal state transitions.
- ``locks``     -- ``LinkLocks``: one in-flight attempt per link.
- ``resolver``  -- conflict strategies (surface, source-wins).
- ``models``    -- data contracts.
- ``reporter``  -- human-readable and JSON report formatting.

Usage example
-------------
::

    from locale_sync.core import InMemoryContentRepository
    from locale_sync.sync import (
        FieldPolicyRegistry, ReconciliationOrchestrator, SnapshotStore,
        format_result,
    )

    registry = FieldPolicyRegistry(
        {"description": "translate", "price": "copy",
         "city_ref": "copy-relationship"}
    )
    orchestrator = ReconciliationOrchestrator(
        repository=repo,            # any ContentRepository
        translator=translator,      # any TranslationService
        registry=registry,
        store=SnapshotStore(".locale_sync"),
    )
    result = orchestrator.reconcile(318, "en")
    print(format_result(result))
"""

from .engine import ReconciliationOrchestrator
from .locks import LinkLocks
from .machine import SyncStateMachine
from .models import (
    BatchReport,
    Document,
    FieldPolicy,
    FieldPolicyKind,
    ReconcileResult,
    SyncLink,
    SyncOutcome,
    SyncSnapshot,
    SyncState,
    TargetFieldSet,
    TranslationRequest,
    TranslationResponse,
)
from .policy import FieldPolicyRegistry
from .reporter import (
    format_batch_report,
    format_result,
    format_status,
    report_to_json,
    result_to_json,
)
from .store import SnapshotStore

__all__ = [
    "BatchReport",
    "Document",
    "FieldPolicy",
    "FieldPolicyKind",
    "FieldPolicyRegistry",
    "LinkLocks",
    "ReconcileResult",
    "ReconciliationOrchestrator",
    "SnapshotStore",
    "SyncLink",
    "SyncOutcome",
    "SyncSnapshot",
    "SyncState",
    "SyncStateMachine",
    "TargetFieldSet",
    "TranslationRequest",
    "TranslationResponse",
    "format_batch_report",
    "format_result",
    "format_status",
    "report_to_json",
    "result_to_json",
]
