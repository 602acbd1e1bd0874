"""Translation delta applier.

Builds translation requests from a source document and merges validated
translation responses back into a target field set.

Key design choices:

* Translation output is **untrusted input**.  ``validate_response`` checks
  the exact key set, value types, slug shape and markup before anything
  reaches the merge step.
* Markup is checked *relative to the source*: the multiset of element tags
  in the translated text (parsed with ``lxml.html``) must equal the
  source's.  Escaped, dropped or invented elements fail validation.
* ``apply`` never falls back to source text for a translate-policy field;
  a missing key is a ``ValidationError``.
* Copy and copy-relationship values are deep-copied so the target never
  aliases the source's reference blobs.
"""

from __future__ import annotations

import copy
import logging
import re
from collections import Counter
from collections.abc import Mapping
from typing import Any

import lxml.html
from lxml.etree import ParserError

from ..core.exceptions import ValidationError
from .models import (
    CORE_TEXT_KEYS,
    Document,
    TargetFieldSet,
    TranslationRequest,
    TranslationResponse,
)
from .policy import FieldPolicyRegistry

logger = logging.getLogger(__name__)

_TAG_HINT = re.compile(r"<[A-Za-z!/]")


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------


def translatable_fields(
    source: Document, registry: FieldPolicyRegistry
) -> dict[str, str]:
    """Translate-policy fields of *source* that carry text to translate.

    Empty values (``None`` or ``""``) are left out: there is nothing to
    translate and ``apply`` carries them over unchanged.

    Raises:
        ValidationError: If a translate-policy field holds a non-string.
    """
    classification = registry.classify(source.fields)
    result: dict[str, str] = {}
    problems: list[str] = []
    for name in sorted(classification.translate):
        value = source.fields[name]
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            problems.append(
                f"field '{name}' has policy translate but holds {type(value).__name__}"
            )
            continue
        result[name] = value
    if problems:
        raise ValidationError(
            f"Source document {source.id} has untranslatable values",
            problems,
        )
    return result


def build_request(
    source: Document,
    registry: FieldPolicyRegistry,
    target_language: str,
    strict: bool = False,
) -> TranslationRequest:
    """Build the translation request for *source*."""
    return TranslationRequest(
        source_document_id=source.id,
        source_language=source.language,
        target_language=target_language,
        title=source.title,
        content=source.body,
        slug=source.slug,
        fields=translatable_fields(source, registry),
        strict=strict,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _tag_counts(text: str) -> Counter:
    """Count element tags in an HTML fragment."""
    if not text.strip():
        return Counter()
    try:
        root = lxml.html.fragment_fromstring(text, create_parent="div")
    except (ParserError, ValueError):
        return Counter()
    counts = Counter(
        el.tag for el in root.iter() if isinstance(el.tag, str)
    )
    # The wrapper added by create_parent
    counts["div"] -= 1
    return +counts


def check_markup(source_text: str, translated_text: str) -> str | None:
    """Return a problem description if markup diverges, else ``None``."""
    if not _TAG_HINT.search(source_text) and not _TAG_HINT.search(
        translated_text
    ):
        return None
    expected = _tag_counts(source_text)
    actual = _tag_counts(translated_text)
    if expected == actual:
        return None
    missing = sorted((expected - actual).elements())
    extra = sorted((actual - expected).elements())
    parts = []
    if missing:
        parts.append(f"missing elements {missing}")
    if extra:
        parts.append(f"unexpected elements {extra}")
    return "; ".join(parts)


def validate_response(
    source: Document,
    payload: Mapping[str, Any] | TranslationResponse,
    registry: FieldPolicyRegistry,
) -> TranslationResponse:
    """Validate a raw translation payload against *source*.

    Args:
        source: The document that was translated.
        payload: The translation service output (mapping of key -> text).
        registry: Field policy registry.

    Returns:
        The validated ``TranslationResponse``.

    Raises:
        ValidationError: Listing every problem found.
    """
    if isinstance(payload, TranslationResponse):
        payload = payload.to_payload()
    if not isinstance(payload, Mapping):
        raise ValidationError(
            f"Translation payload must be an object, got {type(payload).__name__}"
        )

    source_texts = translatable_fields(source, registry)
    expected = set(CORE_TEXT_KEYS) | set(source_texts)
    received = set(payload)
    problems: list[str] = []

    for key in sorted(expected - received):
        problems.append(f"missing key '{key}'")
    for key in sorted(received - expected, key=str):
        problems.append(f"unexpected key '{key}'")

    for key in sorted(expected & received):
        value = payload[key]
        if not isinstance(value, str):
            problems.append(
                f"key '{key}' must be a string, got {type(value).__name__}"
            )

    if problems:
        raise ValidationError(
            f"Translation of document {source.id} rejected: {problems[0]}",
            problems,
        )

    slug = payload["slug"]
    if not slug or any(ch.isspace() for ch in slug):
        problems.append("slug must be non-empty and contain no whitespace")

    markup_sources = {"content": source.body, **source_texts}
    for key, source_text in markup_sources.items():
        problem = check_markup(source_text, payload[key])
        if problem:
            problems.append(f"malformed markup in '{key}': {problem}")

    if problems:
        raise ValidationError(
            f"Translation of document {source.id} rejected: {problems[0]}",
            problems,
        )

    return TranslationResponse(
        title=payload["title"],
        content=payload["content"],
        slug=slug,
        fields={name: payload[name] for name in source_texts},
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def apply(
    source: Document,
    response: Mapping[str, Any] | TranslationResponse,
    registry: FieldPolicyRegistry,
) -> TargetFieldSet:
    """Merge a translation response into a target field set.

    Deterministic and side-effect free: the same inputs always produce an
    equal output, and *source* is never mutated.

    Non-empty translate fields come only from the validated response.  A
    translate field whose source value is ``None`` or ``""`` was never sent
    for translation; that empty value is carried over as is.

    Raises:
        ValidationError: If *response* fails ``validate_response``.
    """
    validated = validate_response(source, response, registry)
    classification = registry.classify(source.fields)

    fields: dict[str, Any] = {}
    for name in sorted(classification.structural):
        fields[name] = copy.deepcopy(source.fields[name])
    for name in sorted(classification.translate):
        if name in validated.fields:
            fields[name] = validated.fields[name]
        else:
            # Empty source value; nothing was sent for translation.
            fields[name] = source.fields[name]

    logger.debug(
        "Merged document %s: %d translated, %d copied, %d ignored",
        source.id,
        len(validated.fields),
        len(classification.structural),
        len(classification.ignore),
    )

    return TargetFieldSet(
        title=validated.title,
        body=validated.content,
        slug=validated.slug,
        fields=fields,
    )
