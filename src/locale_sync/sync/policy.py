"""Field policy registry.

Maps document field names to a ``FieldPolicyKind``.  The table is loaded
data (the ``policies`` section of the config file), so new custom fields
need a configuration change only.

Matching rules (first match wins):

1. Exact field name.
2. Glob patterns (``fnmatch`` syntax, e.g. ``seo_*``) in declaration order.
3. Default ``copy`` -- unknown data is carried over, never dropped.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .models import RESERVED_FIELD_NAMES, FieldPolicy, FieldPolicyKind

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class FieldClassification:
    """Partition of a document's field names by policy kind."""

    translate: frozenset[str]
    copy: frozenset[str]
    copy_relationship: frozenset[str]
    ignore: frozenset[str]

    @property
    def carried(self) -> frozenset[str]:
        """Fields that reach the target document in any form."""
        return self.translate | self.copy | self.copy_relationship

    @property
    def structural(self) -> frozenset[str]:
        """Fields that must stay byte-identical to the source."""
        return self.copy | self.copy_relationship


class FieldPolicyRegistry:
    """Read-only lookup table from field name to policy.

    Args:
        policies: Mapping of field name (or glob pattern) to policy kind.
            Values may be ``FieldPolicyKind`` members or their string
            values (``"translate"``, ``"copy-relationship"`` ...).
        default: Kind used for names nothing matches.

    Raises:
        ValueError: If a kind is unknown, or a reserved name (title,
            content, body, slug) is given a policy.
    """

    def __init__(
        self,
        policies: Mapping[str, FieldPolicyKind | str] | None = None,
        default: FieldPolicyKind = FieldPolicyKind.COPY,
    ) -> None:
        self._default = default
        self._exact: dict[str, FieldPolicyKind] = {}
        self._patterns: list[tuple[str, FieldPolicyKind]] = []

        for name, kind in (policies or {}).items():
            if name in RESERVED_FIELD_NAMES:
                raise ValueError(
                    f"'{name}' is always translated and cannot carry a field policy"
                )
            try:
                resolved = FieldPolicyKind(kind)
            except ValueError:
                valid = [k.value for k in FieldPolicyKind]
                raise ValueError(
                    f"Unknown policy '{kind}' for field '{name}'. Valid policies: {valid}"
                ) from None
            if _GLOB_CHARS & set(name):
                self._patterns.append((name, resolved))
            else:
                self._exact[name] = resolved

        logger.debug(
            "Field policy registry loaded: %d exact, %d patterns",
            len(self._exact),
            len(self._patterns),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def policy_for(self, field_name: str) -> FieldPolicy:
        """Return the policy for *field_name* (total; defaults to copy)."""
        return FieldPolicy(field_name=field_name, kind=self.kind_for(field_name))

    def kind_for(self, field_name: str) -> FieldPolicyKind:
        """Return just the policy kind for *field_name*."""
        kind = self._exact.get(field_name)
        if kind is not None:
            return kind
        for pattern, pattern_kind in self._patterns:
            if fnmatch.fnmatchcase(field_name, pattern):
                return pattern_kind
        return self._default

    def classify(self, field_names: Iterable[str]) -> FieldClassification:
        """Partition *field_names* (or a field mapping's keys) by kind."""
        buckets: dict[FieldPolicyKind, set[str]] = {
            kind: set() for kind in FieldPolicyKind
        }
        for name in field_names:
            buckets[self.kind_for(name)].add(name)
        return FieldClassification(
            translate=frozenset(buckets[FieldPolicyKind.TRANSLATE]),
            copy=frozenset(buckets[FieldPolicyKind.COPY]),
            copy_relationship=frozenset(
                buckets[FieldPolicyKind.COPY_RELATIONSHIP]
            ),
            ignore=frozenset(buckets[FieldPolicyKind.IGNORE]),
        )

    def as_dict(self) -> dict[str, str]:
        """Declared policies, exact names first, for status output."""
        declared = {name: kind.value for name, kind in self._exact.items()}
        declared.update(
            {pattern: kind.value for pattern, kind in self._patterns}
        )
        return declared

    def __len__(self) -> int:
        return len(self._exact) + len(self._patterns)
