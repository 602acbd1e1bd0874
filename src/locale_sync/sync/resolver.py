"""Conflict resolution strategies for the reconciliation engine.

A conflict means the target document's copy or copy-relationship fields
no longer match what the engine last wrote -- someone edited the target
directly.  Strategies:

- ``SurfaceResolver``: Refuse to overwrite; the link fails with a
  ``conflict`` outcome so an operator can look at it.
- ``SourceWinsResolver``: Overwrite the target from the source and log a
  warning.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ConflictInfo(BaseModel):
    """Details about a detected target-side conflict.

    Attributes:
        link_id: Link being reconciled.
        target_document_id: The externally edited document.
        expected_hash: Structural hash recorded at the last sync.
        actual_hash: Structural hash of the target now.
        drifted_fields: Field names whose values changed, when known.
    """

    link_id: str
    target_document_id: int | str
    expected_hash: str
    actual_hash: str
    drifted_fields: list[str] = []

    model_config = {"frozen": True}

    def describe(self) -> str:
        fields = ", ".join(self.drifted_fields) or "unknown fields"
        return (
            f"Target document {self.target_document_id} was edited outside "
            f"the sync engine ({fields})"
        )


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, conflict: ConflictInfo) -> str:
        """Decide what to do about *conflict*.

        Returns:
            ``"surface"`` to stop and report, or ``"overwrite"`` to write
            the source-derived field set anyway.
        """
        ...  # pragma: no cover


class SurfaceResolver:
    """Never overwrite an externally edited target."""

    def resolve(self, conflict: ConflictInfo) -> str:
        """Always return ``"surface"``."""
        logger.warning("%s -- surfacing", conflict.describe())
        return "surface"


class SourceWinsResolver:
    """Overwrite externally edited targets from the source."""

    def resolve(self, conflict: ConflictInfo) -> str:
        """Always return ``"overwrite"``."""
        logger.warning("%s -- overwriting from source", conflict.describe())
        return "overwrite"


_STRATEGY_MAP: dict[str, type] = {
    "surface": SurfaceResolver,
    "source-wins": SourceWinsResolver,
}

CONFLICT_STRATEGIES = tuple(sorted(_STRATEGY_MAP))


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"surface"`` or ``"source-wins"``.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
