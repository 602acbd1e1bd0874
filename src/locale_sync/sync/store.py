"""Content snapshot store.

Holds the ``SyncLink`` and ``SyncSnapshot`` records keyed by ``link_id``
-- the only state the engine needs to survive a restart.

Key design choices:

* **Atomic writes** -- every mutation rewrites ``sync_state.json`` through
  a temp file and ``os.replace()`` so readers never see partial data.
* **Read-your-writes** -- records live in memory behind a re-entrant lock;
  the file is the durable copy, loaded once on construction.
* **Last writer wins** -- ``put()`` ignores a snapshot whose ``updated_at``
  is older than the stored one.
* **Memory-only mode** -- with ``state_dir=None`` nothing touches disk.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections import Counter
from pathlib import Path

from .machine import utcnow
from .models import SyncLink, SyncSnapshot, SyncState

logger = logging.getLogger(__name__)

STATE_FILE = "sync_state.json"
STATE_VERSION = 1


class SnapshotStore:
    """Load, save, and query sync links and snapshots.

    Args:
        state_dir: Directory holding ``sync_state.json`` (typically
            ``.locale_sync/``), or ``None`` for a memory-only store.
    """

    def __init__(self, state_dir: Path | str | None = None) -> None:
        self._state_dir = Path(state_dir) if state_dir is not None else None
        self._lock = threading.RLock()
        self._links: dict[str, SyncLink] = {}
        self._snapshots: dict[str, SyncSnapshot] = {}
        self._load()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get(self, link_id: str) -> SyncSnapshot | None:
        """Return the snapshot for *link_id*, or ``None`` if absent."""
        with self._lock:
            return self._snapshots.get(link_id)

    def put(self, snapshot: SyncSnapshot) -> bool:
        """Upsert *snapshot*.

        Returns:
            ``False`` if the stored snapshot is newer and *snapshot* was
            ignored, ``True`` otherwise.
        """
        with self._lock:
            current = self._snapshots.get(snapshot.link_id)
            if current is not None and current.updated_at > snapshot.updated_at:
                logger.debug(
                    "Ignoring stale snapshot for %s (%s < %s)",
                    snapshot.link_id,
                    snapshot.updated_at.isoformat(),
                    current.updated_at.isoformat(),
                )
                return False
            self._snapshots[snapshot.link_id] = snapshot
            self._save()
            return True

    def list_snapshots(self) -> list[SyncSnapshot]:
        """All snapshots, ordered by link id."""
        with self._lock:
            return [self._snapshots[k] for k in sorted(self._snapshots)]

    def list_by_state(self, state: SyncState) -> list[SyncSnapshot]:
        """Snapshots currently in *state*, oldest update first."""
        with self._lock:
            matches = [s for s in self._snapshots.values() if s.state == state]
        return sorted(matches, key=lambda s: s.updated_at)

    def list_out_of_sync(self) -> list[SyncSnapshot]:
        """Snapshots whose source changed since the last sync."""
        return self.list_by_state(SyncState.OUT_OF_SYNC)

    def counts_by_state(self) -> dict[str, int]:
        """Number of snapshots per state, every state present."""
        with self._lock:
            counts = Counter(s.state for s in self._snapshots.values())
        return {state.value: counts.get(state, 0) for state in SyncState}

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def get_link(self, link_id: str) -> SyncLink | None:
        """Return the link for *link_id*, or ``None`` if absent."""
        with self._lock:
            return self._links.get(link_id)

    def put_link(self, link: SyncLink) -> None:
        """Upsert *link*."""
        with self._lock:
            self._links[link.link_id] = link
            self._save()

    def list_links(self) -> list[SyncLink]:
        """All links, ordered by link id."""
        with self._lock:
            return [self._links[k] for k in sorted(self._links)]

    def ensure_link(self, link: SyncLink) -> tuple[SyncLink, SyncSnapshot]:
        """Create *link* and its ``NOT_LINKED`` snapshot unless present.

        An existing link or snapshot is returned untouched; a snapshot is
        never recreated.
        """
        with self._lock:
            stored_link = self._links.get(link.link_id)
            stored_snapshot = self._snapshots.get(link.link_id)
            if stored_link is not None and stored_snapshot is not None:
                return stored_link, stored_snapshot
            if stored_link is None:
                stored_link = self._links[link.link_id] = link
            if stored_snapshot is None:
                stored_snapshot = SyncSnapshot(
                    link_id=link.link_id, updated_at=utcnow()
                )
                self._snapshots[link.link_id] = stored_snapshot
                logger.info(
                    "Created sync link %s (%s -> %s)",
                    link.link_id,
                    link.source_document_id,
                    link.target_language,
                )
            self._save()
            return stored_link, stored_snapshot

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        """Path of the state file, or ``None`` when memory-only."""
        if self._state_dir is None:
            return None
        return self._state_dir / STATE_FILE

    def _load(self) -> None:
        path = self.path
        if path is None or not path.exists():
            return
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        self._links = {
            k: SyncLink.model_validate(v)
            for k, v in data.get("links", {}).items()
        }
        self._snapshots = {
            k: SyncSnapshot.model_validate(v)
            for k, v in data.get("snapshots", {}).items()
        }
        logger.debug(
            "Loaded %d links from %s", len(self._links), path
        )

    def _save(self) -> None:
        """Persist state to disk atomically (caller holds the lock)."""
        path = self.path
        if path is None:
            return
        self._state_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": STATE_VERSION,
            "saved_at": utcnow().isoformat(),
            "links": {
                k: v.model_dump(mode="json") for k, v in self._links.items()
            },
            "snapshots": {
                k: v.model_dump(mode="json")
                for k, v in self._snapshots.items()
            },
        }
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
