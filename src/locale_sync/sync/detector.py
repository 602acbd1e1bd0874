"""Change detection and canonical content hashing.

A source document has changed since the last sync when the digest of its
sync-relevant content differs from ``SyncSnapshot.last_source_hash``.

Canonicalization rules:

* Field names are sorted (JSON ``sort_keys``), recursively.
* Sequences keep their source order -- gallery and checkbox ordering is
  meaningful.
* Strings are hashed exactly as stored.  Copy fields must stay
  byte-identical to the source, so no Unicode normalization is applied.
* Title, body and slug are always in the hash domain; custom fields only
  when their policy is translate, copy or copy-relationship.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from .models import Document, SyncSnapshot
from .policy import FieldPolicyRegistry


def canonicalize(obj: Any) -> str:
    """Serialize *obj* to a stable, compact JSON string."""
    return json.dumps(
        _jsonable(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_canonical_default,
    )


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(item) for item in obj]
    return obj


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(_jsonable(item) for item in obj)
    return str(obj)


def digest(obj: Any) -> str:
    """SHA-256 hex digest of the canonical form of *obj*."""
    return hashlib.sha256(canonicalize(obj).encode("utf-8")).hexdigest()


def _restricted(fields: Mapping[str, Any], names: Iterable[str]) -> dict:
    return {name: fields[name] for name in names if name in fields}


def content_hash(document: Document, registry: FieldPolicyRegistry) -> str:
    """Hash of everything a change to which requires re-synchronization."""
    classification = registry.classify(document.fields)
    return digest(
        {
            "title": document.title,
            "body": document.body,
            "slug": document.slug,
            "fields": _restricted(document.fields, classification.carried),
        }
    )


def structural_hash(
    document: Document, registry: FieldPolicyRegistry
) -> str:
    """Hash of the copy and copy-relationship fields only.

    Used on the target side: if it moves between syncs, someone edited a
    field the engine owns.
    """
    classification = registry.classify(document.fields)
    return digest(_restricted(document.fields, classification.structural))


def payload_hash(payload: Mapping[str, Any]) -> str:
    """Hash of a translation payload."""
    return digest(dict(payload))


def has_changed(
    document: Document,
    snapshot: SyncSnapshot | None,
    registry: FieldPolicyRegistry,
) -> bool:
    """Return ``True`` if *document* needs reconciliation.

    Absence of a snapshot, or of a recorded source hash, always signals
    work.
    """
    if snapshot is None or snapshot.last_source_hash is None:
        return True
    return content_hash(document, registry) != snapshot.last_source_hash


def drifted_fields(
    expected: Mapping[str, Any],
    actual: Mapping[str, Any],
    names: Iterable[str],
) -> list[str]:
    """Names whose canonical values differ between two field mappings."""
    return sorted(
        name
        for name in names
        if canonicalize(expected.get(name)) != canonicalize(actual.get(name))
    )
