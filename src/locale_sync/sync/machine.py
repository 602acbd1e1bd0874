"""Sync state machine.

Every create-vs-update and existence decision of a reconciliation maps to
a named transition here; the orchestrator never flips ``state`` directly.

::

    NOT_LINKED  --begin-->    PENDING
    PENDING     --written-->  SYNCED
    PENDING     --failed-->   FAILED
    SYNCED      --changed-->  OUT_OF_SYNC
    OUT_OF_SYNC --begin-->    PENDING
    FAILED      --retry-->    PENDING

``SYNCED`` and ``FAILED`` are rest states.  A ``PENDING`` snapshot older
than the liveness window is abandoned and may be reclaimed as ``FAILED``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from ..core.exceptions import IllegalTransitionError
from .models import SyncSnapshot, SyncState

logger = logging.getLogger(__name__)

TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.NOT_LINKED: frozenset({SyncState.PENDING}),
    SyncState.PENDING: frozenset({SyncState.SYNCED, SyncState.FAILED}),
    SyncState.SYNCED: frozenset({SyncState.OUT_OF_SYNC}),
    SyncState.OUT_OF_SYNC: frozenset({SyncState.PENDING}),
    SyncState.FAILED: frozenset({SyncState.PENDING}),
}

REST_STATES = frozenset({SyncState.SYNCED, SyncState.FAILED})


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SyncStateMachine:
    """Validate and apply state transitions to snapshots.

    Args:
        liveness_window: How long a ``PENDING`` snapshot may go without an
            update before it is considered abandoned.
    """

    def __init__(
        self, liveness_window: timedelta = timedelta(minutes=15)
    ) -> None:
        self.liveness_window = liveness_window

    @staticmethod
    def can_transition(current: SyncState, target: SyncState) -> bool:
        """Return ``True`` if *current* -> *target* is legal."""
        return target in TRANSITIONS.get(current, frozenset())

    def transition(
        self,
        snapshot: SyncSnapshot,
        target: SyncState,
        now: datetime | None = None,
        **changes,
    ) -> SyncSnapshot:
        """Return a copy of *snapshot* moved to *target*.

        Extra keyword arguments update other snapshot fields in the same
        step (hashes, outcome, error).  ``updated_at`` always advances.

        Raises:
            IllegalTransitionError: If the transition is not in the table.
        """
        if not self.can_transition(snapshot.state, target):
            raise IllegalTransitionError(snapshot.state, target)

        update = dict(changes)
        update["state"] = target
        update["updated_at"] = now or utcnow()
        if target == SyncState.PENDING:
            update.setdefault("attempts", snapshot.attempts + 1)
        logger.info(
            "Link %s: %s -> %s",
            snapshot.link_id,
            snapshot.state.value,
            target.value,
        )
        return snapshot.model_copy(update=update)

    def is_stale(
        self, snapshot: SyncSnapshot, now: datetime | None = None
    ) -> bool:
        """Return ``True`` for a ``PENDING`` snapshot past the liveness window."""
        if snapshot.state != SyncState.PENDING:
            return False
        return (now or utcnow()) - snapshot.updated_at > self.liveness_window

    def reclaim(
        self, snapshot: SyncSnapshot, now: datetime | None = None
    ) -> SyncSnapshot:
        """Mark an abandoned ``PENDING`` snapshot as ``FAILED``."""
        logger.warning(
            "Link %s: reclaiming abandoned pending attempt (last update %s)",
            snapshot.link_id,
            snapshot.updated_at.isoformat(),
        )
        return self.transition(
            snapshot,
            SyncState.FAILED,
            now=now,
            last_error="abandoned pending attempt reclaimed",
        )
