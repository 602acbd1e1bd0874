"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``FieldPolicyKind`` / ``FieldPolicy``: how a field is treated on merge.
- ``Document``: one language variant of a structured content record.
- ``SyncLink``: source document + target language identity.
- ``SyncState`` / ``SyncSnapshot``: durable memory of the last sync.
- ``TranslationRequest`` / ``TranslationResponse``: translation payloads.
- ``TargetFieldSet``: merged payload written to the target document.
- ``SyncOutcome`` / ``ReconcileResult`` / ``BatchReport``: results.

All models are frozen (immutable); state changes produce new instances.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Wire keys for the text every translation carries regardless of policy.
# ``content`` is the wire name of ``Document.body``.
CORE_TEXT_KEYS: tuple[str, ...] = ("title", "content", "slug")
RESERVED_FIELD_NAMES = frozenset({"title", "content", "body", "slug"})


class FieldPolicyKind(str, Enum):
    """How a document field is carried into a target language."""

    TRANSLATE = "translate"
    COPY = "copy"
    COPY_RELATIONSHIP = "copy-relationship"
    IGNORE = "ignore"


class FieldPolicy(BaseModel):
    """Policy for a single field name."""

    field_name: str
    kind: FieldPolicyKind

    model_config = {"frozen": True}


class Document(BaseModel):
    """A structured content record in exactly one language.

    Attributes:
        id: Repository identifier (numeric or string).
        language: Language code of this variant.
        title: Document title.
        body: Main content (markup permitted).
        slug: URL slug.
        fields: Custom fields -- scalars, booleans, ordered sequences and
            opaque reference blobs.
        content_hash: Hash reported by the repository, if any.
        modified_at: Last modification time reported by the repository.
    """

    id: int | str
    language: str
    title: str = ""
    body: str = ""
    slug: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)
    content_hash: str | None = None
    modified_at: datetime | None = None

    model_config = {"frozen": True}


class SyncLink(BaseModel):
    """Groups one source document with its target in one language.

    ``target_document_id`` stays ``None`` until the first successful create
    (or until an existing linked target is adopted).
    """

    link_id: str
    source_document_id: int | str
    source_language: str
    target_language: str
    target_document_id: int | str | None = None

    model_config = {"frozen": True}


class SyncState(str, Enum):
    """Lifecycle state of a sync link."""

    NOT_LINKED = "not_linked"
    PENDING = "pending"
    SYNCED = "synced"
    OUT_OF_SYNC = "out_of_sync"
    FAILED = "failed"


class SyncOutcome(str, Enum):
    """Result of one reconciliation attempt."""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"
    VALIDATION_FAILED = "validation_failed"
    TRANSPORT_FAILED = "transport_failed"
    CONFLICT = "conflict"
    BUSY = "busy"
    SUPERSEDED = "superseded"


class SyncSnapshot(BaseModel):
    """What was last synchronized for one link.

    Attributes:
        link_id: Owning link.
        last_source_hash: Change-detector hash of the source at last sync.
        last_applied_translation_hash: Hash of the translation payload
            that produced the current target.
        state: Current lifecycle state.
        updated_at: Time of the last change to this snapshot.
        last_target_hash: Structural hash (copy + copy-relationship
            fields) of the target as last written.
        last_outcome: Outcome of the most recent attempt.
        last_error: Error message of the most recent failed attempt.
        attempts: Number of reconciliation attempts that reached Pending.
    """

    link_id: str
    last_source_hash: str | None = None
    last_applied_translation_hash: str | None = None
    state: SyncState = SyncState.NOT_LINKED
    updated_at: datetime
    last_target_hash: str | None = None
    last_outcome: SyncOutcome | None = None
    last_error: str | None = None
    attempts: int = 0

    model_config = {"frozen": True}


class TranslationRequest(BaseModel):
    """Payload sent to the translation service.

    Only translate-policy fields plus title/content/slug are carried. A
    ``strict`` request asks the service to return exactly the listed keys
    and nothing else; it is used after a validation failure.
    """

    source_document_id: int | str
    source_language: str
    target_language: str
    title: str
    content: str
    slug: str
    fields: dict[str, str] = Field(default_factory=dict)
    strict: bool = False
    attempt: int = 1

    model_config = {"frozen": True}

    @property
    def expected_keys(self) -> frozenset[str]:
        """Exact key set a valid response must return."""
        return frozenset(CORE_TEXT_KEYS) | frozenset(self.fields)

    def stricter(self) -> TranslationRequest:
        """Return a copy marked strict for the next attempt."""
        return self.model_copy(
            update={"strict": True, "attempt": self.attempt + 1}
        )

    def to_payload(self) -> dict[str, Any]:
        """Flat JSON body for HTTP translation endpoints."""
        return {
            "source_document_id": self.source_document_id,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "strict": self.strict,
            "attempt": self.attempt,
            "expected_keys": sorted(self.expected_keys),
            "text": {
                "title": self.title,
                "content": self.content,
                "slug": self.slug,
                **self.fields,
            },
        }


class TranslationResponse(BaseModel):
    """A validated translation payload."""

    title: str
    content: str
    slug: str
    fields: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_payload(self) -> dict[str, str]:
        """Flat key/value form, as the translation service returns it."""
        return {
            "title": self.title,
            "content": self.content,
            "slug": self.slug,
            **self.fields,
        }


class TargetFieldSet(BaseModel):
    """Merged field set written to the target-language document."""

    title: str
    body: str
    slug: str
    fields: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ReconcileResult(BaseModel):
    """Outcome of reconciling one link."""

    link_id: str
    source_document_id: int | str
    target_language: str
    outcome: SyncOutcome
    state: SyncState | None = None
    target_document_id: int | str | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        """True for outcomes that leave the link in a good state."""
        return self.outcome in (
            SyncOutcome.UNCHANGED,
            SyncOutcome.CREATED,
            SyncOutcome.UPDATED,
            SyncOutcome.BUSY,
        )


class BatchReport(BaseModel):
    """Aggregate results for a batch of reconciliations."""

    results: list[ReconcileResult] = []
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    def with_outcome(self, outcome: SyncOutcome) -> list[ReconcileResult]:
        """Results that ended with *outcome*."""
        return [r for r in self.results if r.outcome == outcome]

    @property
    def created(self) -> list[ReconcileResult]:
        return self.with_outcome(SyncOutcome.CREATED)

    @property
    def updated(self) -> list[ReconcileResult]:
        return self.with_outcome(SyncOutcome.UPDATED)

    @property
    def unchanged(self) -> list[ReconcileResult]:
        return self.with_outcome(SyncOutcome.UNCHANGED)

    @property
    def failed(self) -> list[ReconcileResult]:
        """Results whose outcome is not a success."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the batch.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        lines = ["Reconciliation batch"]
        for outcome in SyncOutcome:
            lines.append(
                f"  {outcome.value + ':':<19}{len(self.with_outcome(outcome))}"
            )
        lines.append(f"  {'total:':<19}{len(self.results)}")
        return "\n".join(lines)


def make_link_id(source_document_id: int | str, target_language: str) -> str:
    """Stable link identifier for a (source document, target language) pair."""
    key = f"{source_document_id}:{target_language}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
