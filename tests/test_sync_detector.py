"""Tests for canonical hashing and change detection.

Covers:
- canonicalize sorts keys but keeps sequence order
- Strings hash byte for byte, so NFC and NFD spellings differ
- content_hash covers title/body/slug and carried fields only
- structural_hash covers copy and copy-relationship fields only
- has_changed with and without a snapshot
- drifted_fields names differing fields
"""

from __future__ import annotations

from datetime import datetime, timezone

from locale_sync.sync.detector import (
    canonicalize,
    content_hash,
    digest,
    drifted_fields,
    has_changed,
    payload_hash,
    structural_hash,
)
from locale_sync.sync.models import Document, SyncSnapshot


def _doc(**overrides) -> Document:
    data = {
        "id": 318,
        "language": "fa",
        "title": "T",
        "body": "<p>B</p>",
        "slug": "t",
        "fields": {
            "description": "D",
            "price": "1050",
            "city_ref": [{"id": 7}],
            "_edit_lock": "1",
        },
    }
    data.update(overrides)
    return Document(**data)


def _snapshot(source_hash: str | None) -> SyncSnapshot:
    return SyncSnapshot(
        link_id="l1",
        last_source_hash=source_hash,
        updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestCanonicalize:
    def test_key_order_irrelevant(self):
        assert canonicalize({"b": 1, "a": 2}) == canonicalize({"a": 2, "b": 1})

    def test_nested_key_order_irrelevant(self):
        a = {"x": [{"id": 7, "type": "city"}]}
        b = {"x": [{"type": "city", "id": 7}]}
        assert digest(a) == digest(b)

    def test_sequence_order_matters(self):
        """Gallery ordering is meaningful."""
        assert digest([1, 2, 3]) != digest([3, 2, 1])

    def test_unicode_forms_hash_differently(self):
        composed = "Caf\u00e9"
        decomposed = "Cafe\u0301"
        assert digest({"t": composed}) != digest({"t": decomposed})

    def test_drifted_fields_sees_unicode_form_change(self):
        assert drifted_fields(
            {"price": "Caf\u00e9"}, {"price": "Cafe\u0301"}, ["price"]
        ) == ["price"]

    def test_tuples_hash_like_lists(self):
        assert digest((1, 2)) == digest([1, 2])

    def test_datetimes_serialize(self):
        moment = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert moment.isoformat() in canonicalize({"at": moment})


class TestContentHash:
    def test_stable(self, registry):
        assert content_hash(_doc(), registry) == content_hash(_doc(), registry)

    def test_title_change_detected(self, registry):
        assert content_hash(_doc(title="X"), registry) != content_hash(
            _doc(), registry
        )

    def test_copy_field_change_detected(self, registry):
        changed = _doc(
            fields={
                "description": "D",
                "price": "1100",
                "city_ref": [{"id": 7}],
                "_edit_lock": "1",
            }
        )
        assert content_hash(changed, registry) != content_hash(_doc(), registry)

    def test_ignore_field_change_not_detected(self, registry):
        changed = _doc(
            fields={
                "description": "D",
                "price": "1050",
                "city_ref": [{"id": 7}],
                "_edit_lock": "2",
            }
        )
        assert content_hash(changed, registry) == content_hash(_doc(), registry)

    def test_metadata_not_hashed(self, registry):
        """Ids, language and timestamps are not sync-relevant content."""
        moved = _doc(
            id=999,
            modified_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
        assert content_hash(moved, registry) == content_hash(_doc(), registry)


class TestStructuralHash:
    def test_translated_text_irrelevant(self, registry):
        translated = _doc(
            title="Other",
            fields={
                "description": "Other",
                "price": "1050",
                "city_ref": [{"id": 7}],
                "_edit_lock": "9",
            },
        )
        assert structural_hash(translated, registry) == structural_hash(
            _doc(), registry
        )

    def test_relationship_change_detected(self, registry):
        edited = _doc(
            fields={
                "description": "D",
                "price": "1050",
                "city_ref": [{"id": 8}],
                "_edit_lock": "1",
            }
        )
        assert structural_hash(edited, registry) != structural_hash(
            _doc(), registry
        )


class TestHasChanged:
    def test_no_snapshot_means_changed(self, registry):
        assert has_changed(_doc(), None, registry) is True

    def test_snapshot_without_hash_means_changed(self, registry):
        assert has_changed(_doc(), _snapshot(None), registry) is True

    def test_matching_hash_unchanged(self, registry):
        snapshot = _snapshot(content_hash(_doc(), registry))
        assert has_changed(_doc(), snapshot, registry) is False

    def test_different_hash_changed(self, registry):
        snapshot = _snapshot(content_hash(_doc(), registry))
        assert has_changed(_doc(body="<p>new</p>"), snapshot, registry) is True


class TestPayloadHash:
    def test_order_independent(self):
        assert payload_hash({"title": "a", "slug": "b"}) == payload_hash(
            {"slug": "b", "title": "a"}
        )


class TestDriftedFields:
    def test_lists_only_differing_names(self):
        expected = {"price": "1050", "city_ref": [{"id": 7}]}
        actual = {"price": "1050", "city_ref": [{"id": 8}]}
        assert drifted_fields(expected, actual, ["price", "city_ref"]) == [
            "city_ref"
        ]

    def test_missing_field_counts_as_drift(self):
        assert drifted_fields({"price": "1"}, {}, ["price"]) == ["price"]
