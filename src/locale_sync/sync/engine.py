"""Reconciliation orchestrator.

The ``ReconciliationOrchestrator`` drives one (source document, target
language) link from whatever state it is in to ``synced``.  For each
call to ``reconcile()`` it:

1. Takes the link's in-process lock (contention is a ``busy`` no-op).
2. Resolves the link and its snapshot, reclaiming an abandoned
   ``pending`` attempt or backing off from a live one.
3. Fetches the source and runs the change detector; an unchanged,
   ``synced`` link returns ``unchanged`` without touching the repository.
4. Moves the snapshot to ``pending``, translates the translate-policy
   subset plus title/content/slug, validating (and tightening the request)
   until the response is well formed.
5. Re-reads the source; if it moved while the translation was in flight
   the result is discarded and the attempt restarts.
6. Merges the response, checks the target for external edits, writes it
   (create or update), and verifies the write.
7. Advances hashes and moves to ``synced``; any failure moves to
   ``failed`` and leaves the hashes where they were.

Every collaborator call runs on a worker pool with a hard timeout, and
transport failures are retried with exponential backoff.  ``reconcile``
never raises.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..config_schema import SyncConfig
from ..core.exceptions import (
    ConflictError,
    LockContentionError,
    NotFoundError,
    SyncError,
    TransportError,
    ValidationError,
)
from ..core.retry import retry_with_backoff
from .applier import apply, build_request, validate_response
from .detector import (
    canonicalize,
    content_hash,
    drifted_fields,
    has_changed,
    payload_hash,
    structural_hash,
)
from .locks import LinkLocks
from .machine import SyncStateMachine, utcnow
from .models import (
    BatchReport,
    Document,
    ReconcileResult,
    SyncLink,
    SyncOutcome,
    SyncSnapshot,
    SyncState,
    TargetFieldSet,
    TranslationResponse,
    make_link_id,
)
from .policy import FieldPolicyRegistry
from .resolver import ConflictInfo, ConflictResolver, create_resolver
from .store import SnapshotStore

if TYPE_CHECKING:
    from ..core.repository import ContentRepository
    from ..core.translator import TranslationService

logger = logging.getLogger(__name__)


class _Superseded(SyncError):
    """The source kept changing while translations were in flight."""


class ReconciliationOrchestrator:
    """Reconcile source documents into target languages.

    Args:
        repository: Content repository collaborator.
        translator: Translation service collaborator.
        registry: Field policy registry (read-only after load).
        store: Snapshot store holding links and snapshots.
        settings: Engine settings; defaults to ``SyncConfig()``.
        resolver: Conflict resolver; defaults to the one named by
            ``settings.conflict_strategy``.
        machine: State machine; defaults to one using
            ``settings.liveness_window``.
        locks: Per-link lock registry. Share one instance between
            orchestrators that serve the same store.
        executor: Worker pool for collaborator calls. Created (and owned)
            when omitted.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        repository: ContentRepository,
        translator: TranslationService,
        registry: FieldPolicyRegistry,
        store: SnapshotStore,
        *,
        settings: SyncConfig | None = None,
        resolver: ConflictResolver | None = None,
        machine: SyncStateMachine | None = None,
        locks: LinkLocks | None = None,
        executor: ThreadPoolExecutor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.translator = translator
        self.registry = registry
        self.store = store
        self.settings = settings or SyncConfig()
        self.resolver = resolver or create_resolver(
            self.settings.conflict_strategy
        )
        self.machine = machine or SyncStateMachine(
            self.settings.liveness_window
        )
        self.locks = locks or LinkLocks()
        self.retry_config = self.settings.backoff.to_retry_config()
        self._owns_executor = executor is None
        self._executor = executor or self._new_executor()
        self._sleep = sleep
        # Timed-out calls still occupying a worker, keyed by link id.
        self._abandoned_guard = threading.Lock()
        self._abandoned: dict[str | None, set[Future]] = {}
        self._hung: set[Future] = set()

    @property
    def source_language(self) -> str:
        return self.settings.source_language

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def reconcile(
        self,
        source_document_id: int | str,
        target_language: str,
        source_language: str | None = None,
    ) -> ReconcileResult:
        """Bring the target-language variant of a source document in sync.

        Args:
            source_document_id: Id of the source document.
            target_language: Language to reconcile into.
            source_language: Overrides ``settings.source_language``.

        Returns:
            A ``ReconcileResult``; never raises.
        """
        started_at = utcnow()
        link = SyncLink(
            link_id=make_link_id(source_document_id, target_language),
            source_document_id=source_document_id,
            source_language=source_language or self.source_language,
            target_language=target_language,
        )
        try:
            with self.locks.hold(link.link_id):
                return self._reconcile_locked(link, started_at)
        except LockContentionError as exc:
            logger.info("Link %s: %s", link.link_id, exc)
            return self._result(
                link,
                SyncOutcome.BUSY,
                started_at,
                snapshot=self.store.get(link.link_id),
                error=str(exc),
            )
        except Exception as exc:
            logger.exception(
                "Unexpected failure reconciling link %s", link.link_id
            )
            return self._result(
                link,
                SyncOutcome.TRANSPORT_FAILED,
                started_at,
                error=f"unexpected error: {exc}",
            )

    def _reconcile_locked(
        self, link: SyncLink, started_at: datetime
    ) -> ReconcileResult:
        link, snapshot = self.store.ensure_link(link)

        if snapshot.state == SyncState.PENDING:
            if not self.machine.is_stale(snapshot):
                return self._result(
                    link,
                    SyncOutcome.BUSY,
                    started_at,
                    snapshot=snapshot,
                    error=(
                        "another attempt has been pending since "
                        f"{snapshot.updated_at.isoformat()}"
                    ),
                )
            snapshot = self.machine.reclaim(snapshot)
            self.store.put(snapshot)

        try:
            source = self._fetch_source(link)
        except SyncError as exc:
            # Nothing was attempted; the state stays where it was.
            logger.error(
                "Link %s: cannot read source %s: %s",
                link.link_id,
                link.source_document_id,
                exc,
            )
            snapshot = snapshot.model_copy(
                update={
                    "last_outcome": SyncOutcome.TRANSPORT_FAILED,
                    "last_error": str(exc),
                    "updated_at": utcnow(),
                }
            )
            self.store.put(snapshot)
            return self._result(
                link,
                SyncOutcome.TRANSPORT_FAILED,
                started_at,
                snapshot=snapshot,
                error=str(exc),
            )

        changed = has_changed(source, snapshot, self.registry)
        if snapshot.state == SyncState.SYNCED:
            if not changed:
                logger.debug("Link %s: source unchanged", link.link_id)
                return self._result(
                    link, SyncOutcome.UNCHANGED, started_at, snapshot=snapshot
                )
            snapshot = self.machine.transition(snapshot, SyncState.OUT_OF_SYNC)
            self.store.put(snapshot)

        snapshot = self.machine.transition(
            snapshot, SyncState.PENDING, last_error=None
        )
        self.store.put(snapshot)

        try:
            return self._attempt(link, snapshot, source, started_at)
        except Exception as exc:
            logger.exception(
                "Link %s: unexpected failure while pending", link.link_id
            )
            return self._fail(
                link,
                snapshot,
                SyncOutcome.TRANSPORT_FAILED,
                exc,
                started_at,
            )

    def _attempt(
        self,
        link: SyncLink,
        snapshot: SyncSnapshot,
        source: Document,
        started_at: datetime,
    ) -> ReconcileResult:
        """Translate, merge and write while the snapshot is pending."""
        try:
            source, response = self._translate_current(link, source)
            target = apply(source, response, self.registry)
            link, written, outcome = self._write(link, snapshot, target)
        except ValidationError as exc:
            return self._fail(
                link, snapshot, SyncOutcome.VALIDATION_FAILED, exc, started_at
            )
        except (TransportError, NotFoundError) as exc:
            return self._fail(
                link, snapshot, SyncOutcome.TRANSPORT_FAILED, exc, started_at
            )
        except ConflictError as exc:
            return self._fail(
                link, snapshot, SyncOutcome.CONFLICT, exc, started_at
            )
        except _Superseded as exc:
            return self._fail(
                link, snapshot, SyncOutcome.SUPERSEDED, exc, started_at
            )

        snapshot = self.machine.transition(
            snapshot,
            SyncState.SYNCED,
            last_source_hash=content_hash(source, self.registry),
            last_applied_translation_hash=payload_hash(response.to_payload()),
            last_target_hash=structural_hash(written, self.registry),
            last_outcome=outcome,
            last_error=None,
        )
        self.store.put(snapshot)
        logger.info(
            "Link %s: %s target document %s",
            link.link_id,
            outcome.value,
            written.id,
        )
        return self._result(link, outcome, started_at, snapshot=snapshot)

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    def _translate_current(
        self, link: SyncLink, source: Document
    ) -> tuple[Document, TranslationResponse]:
        """Translate *source*, restarting if it changes underneath us.

        Returns:
            The source revision the response belongs to, and the response.
        """
        restarts = 0
        while True:
            response = self._translate(link, source)
            current = self._fetch_source(link)
            if content_hash(current, self.registry) == content_hash(
                source, self.registry
            ):
                return source, response
            if restarts >= self.settings.max_restarts:
                raise _Superseded(
                    f"source document {link.source_document_id} changed "
                    f"during translation {restarts + 1} times"
                )
            restarts += 1
            logger.info(
                "Link %s: source changed during translation, restarting (%d/%d)",
                link.link_id,
                restarts,
                self.settings.max_restarts,
            )
            source = current

    def _translate(
        self, link: SyncLink, source: Document
    ) -> TranslationResponse:
        request = build_request(source, self.registry, link.target_language)
        last_error: ValidationError | None = None
        for attempt in range(self.settings.validation_attempts):
            try:
                raw = self._call_with_retry(
                    self.translator.translate,
                    request,
                    name=f"translate {link.source_document_id}->{link.target_language}",
                    link_id=link.link_id,
                )
                return validate_response(source, raw, self.registry)
            except ValidationError as exc:
                last_error = exc
                logger.warning(
                    "Link %s: translation rejected (attempt %d/%d): %s",
                    link.link_id,
                    attempt + 1,
                    self.settings.validation_attempts,
                    "; ".join(exc.problems) or exc,
                )
                request = request.stricter()
        assert last_error is not None
        raise last_error

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write(
        self,
        link: SyncLink,
        snapshot: SyncSnapshot,
        target: TargetFieldSet,
    ) -> tuple[SyncLink, Document, SyncOutcome]:
        target_id = link.target_document_id
        if target_id is None:
            target_id = self._call_with_retry(
                self.repository.find_linked_document,
                link.source_document_id,
                link.target_language,
                name=f"find {link.source_document_id}->{link.target_language}",
                link_id=link.link_id,
            )
            if target_id is not None:
                logger.info(
                    "Link %s: adopting existing target document %s",
                    link.link_id,
                    target_id,
                )
                link = self._record_target(link, target_id)

        if target_id is not None and snapshot.last_target_hash is not None:
            try:
                self._check_conflict(link, snapshot, target)
            except NotFoundError:
                logger.warning(
                    "Link %s: target document %s disappeared, recreating",
                    link.link_id,
                    target_id,
                )
                target_id = None
                link = link.model_copy(update={"target_document_id": None})
                self.store.put_link(link)

        if target_id is None:
            written = self._create(link, target)
            link = self._record_target(link, written.id)
            outcome = SyncOutcome.CREATED
        else:
            written = self._call_with_retry(
                self.repository.update_document,
                target_id,
                target,
                name=f"update {target_id}",
                link_id=link.link_id,
            )
            outcome = SyncOutcome.UPDATED

        self._verify(written, target)
        return link, written, outcome

    def _create(self, link: SyncLink, target: TargetFieldSet) -> Document:
        """Create the target document at most once per attempt.

        A retry never starts a new create while the previous one can still
        land: a timed-out create is waited on through the backoff, and its
        document adopted when it returns.  Only after the previous create
        failed outright is the repository searched before creating again.
        """
        name = f"create {link.source_document_id}->{link.target_language}"
        earlier: Future | None = None

        def create() -> Document:
            nonlocal earlier
            if earlier is not None:
                if not earlier.done():
                    raise TransportError(
                        f"{name}: previous create timed out and is still running"
                    )
                self._release(earlier, name, link.link_id)
                if not earlier.cancelled() and earlier.exception() is None:
                    document = earlier.result()
                    logger.info(
                        "Link %s: timed-out create landed as %s",
                        link.link_id,
                        document.id,
                    )
                    return document
                existing = self._call(
                    self.repository.find_linked_document,
                    link.source_document_id,
                    link.target_language,
                    name="find before retrying create",
                    link_id=link.link_id,
                )
                if existing is not None:
                    logger.info(
                        "Link %s: earlier create landed as %s",
                        link.link_id,
                        existing,
                    )
                    return self._call(
                        self.repository.get_document,
                        existing,
                        link.target_language,
                        name=f"get {existing}",
                        link_id=link.link_id,
                    )
            future = self._submit(
                self.repository.create_document,
                link.target_language,
                target,
                link,
                name=name,
                link_id=link.link_id,
            )
            earlier = future
            return self._await(future, name=name, link_id=link.link_id)

        return self._retry(create, name="create target")

    def _check_conflict(
        self,
        link: SyncLink,
        snapshot: SyncSnapshot,
        target: TargetFieldSet,
    ) -> None:
        current = self._call_with_retry(
            self.repository.get_document,
            link.target_document_id,
            link.target_language,
            name=f"get {link.target_document_id}",
            link_id=link.link_id,
        )
        actual = structural_hash(current, self.registry)
        if actual == snapshot.last_target_hash:
            return
        names = self.registry.classify(
            set(current.fields) | set(target.fields)
        ).structural
        conflict = ConflictInfo(
            link_id=link.link_id,
            target_document_id=current.id,
            expected_hash=snapshot.last_target_hash or "",
            actual_hash=actual,
            drifted_fields=drifted_fields(target.fields, current.fields, names),
        )
        if self.resolver.resolve(conflict) != "overwrite":
            raise ConflictError(conflict.describe(), conflict.drifted_fields)

    def _verify(self, written: Document, target: TargetFieldSet) -> None:
        """Confirm the repository stored what was sent."""
        mismatched = [
            name
            for name, expected in (
                ("title", target.title),
                ("body", target.body),
                ("slug", target.slug),
            )
            if getattr(written, name) != expected
        ]
        mismatched.extend(
            name
            for name, value in target.fields.items()
            if name not in written.fields
            or canonicalize(written.fields[name]) != canonicalize(value)
        )
        if mismatched:
            raise TransportError(
                f"Repository did not confirm the write of document {written.id}: "
                f"mismatched {sorted(mismatched)}",
                retryable=False,
            )

    def _record_target(
        self, link: SyncLink, target_id: int | str
    ) -> SyncLink:
        if link.target_document_id == target_id:
            return link
        link = link.model_copy(update={"target_document_id": target_id})
        self.store.put_link(link)
        return link

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    def _fetch_source(self, link: SyncLink) -> Document:
        return self._call_with_retry(
            self.repository.get_document,
            link.source_document_id,
            link.source_language,
            name=f"get {link.source_document_id}",
            link_id=link.link_id,
        )

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="locale-sync",
        )

    def _submit(
        self,
        func: Callable[..., Any],
        *args: Any,
        name: str,
        link_id: str | None = None,
    ) -> Future:
        """Queue *func* on the worker pool.

        Raises:
            TransportError: If an earlier call for *link_id* timed out and
                is still running.
        """
        with self._abandoned_guard:
            if link_id is not None and self._abandoned.get(link_id):
                raise TransportError(
                    f"{name} deferred: an earlier call for link {link_id} "
                    "timed out and is still running"
                )
            return self._executor.submit(func, *args)

    def _await(
        self, future: Future, *, name: str, link_id: str | None = None
    ) -> Any:
        timeout = self.settings.call_timeout_seconds
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            if not future.cancel():
                self._abandon(future, name, link_id)
            raise TransportError(f"{name} timed out after {timeout}s") from None

    def _call(
        self,
        func: Callable[..., Any],
        *args: Any,
        name: str,
        link_id: str | None = None,
    ) -> Any:
        """Run *func* on the worker pool with the configured timeout.

        A timed-out call cannot be stopped; it keeps its worker until it
        returns, and the link stays refused until then.
        """
        future = self._submit(func, *args, name=name, link_id=link_id)
        return self._await(future, name=name, link_id=link_id)

    def _abandon(
        self, future: Future, name: str, link_id: str | None
    ) -> None:
        with self._abandoned_guard:
            self._abandoned.setdefault(link_id, set()).add(future)
            hung = self._hung
            hung.add(future)
            saturated = len(hung) >= self.settings.max_workers
            if saturated and self._owns_executor:
                stale = self._executor
                self._executor = self._new_executor()
                self._hung = set()
                stale.shutdown(wait=False)
        logger.warning(
            "Abandoned %s after timeout (link %s); %d worker(s) hung",
            name,
            link_id,
            len(hung),
        )
        if saturated:
            if self._owns_executor:
                logger.warning(
                    "All %d workers hung on timed-out calls; started a fresh pool",
                    self.settings.max_workers,
                )
            else:
                logger.error(
                    "All %d workers of the shared pool are hung",
                    self.settings.max_workers,
                )
        future.add_done_callback(
            lambda done: self._release(done, name, link_id, hung)
        )

    def _release(
        self,
        future: Future,
        name: str,
        link_id: str | None,
        hung: set[Future] | None = None,
    ) -> None:
        with self._abandoned_guard:
            for pool_hung in (hung, self._hung):
                if pool_hung is not None:
                    pool_hung.discard(future)
            running = self._abandoned.get(link_id)
            if running is None or future not in running:
                return
            running.discard(future)
            if not running:
                del self._abandoned[link_id]
        logger.info("Abandoned %s finished (link %s)", name, link_id)

    def abandoned_calls(self, link_id: str | None = None) -> int:
        """Number of timed-out calls still running, for one link or all."""
        with self._abandoned_guard:
            if link_id is not None:
                return len(self._abandoned.get(link_id, ()))
            return sum(len(running) for running in self._abandoned.values())

    def _retry(self, operation: Callable[[], Any], name: str) -> Any:
        result = retry_with_backoff(
            operation,
            self.retry_config,
            retry_on=(TransportError,),
            operation_name=name,
            should_retry=lambda exc: getattr(exc, "retryable", True),
            sleep=self._sleep,
        )
        if result.success:
            return result.result
        raise result.error

    def _call_with_retry(
        self,
        func: Callable[..., Any],
        *args: Any,
        name: str,
        link_id: str | None = None,
    ) -> Any:
        return self._retry(
            lambda: self._call(func, *args, name=name, link_id=link_id), name
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _fail(
        self,
        link: SyncLink,
        snapshot: SyncSnapshot,
        outcome: SyncOutcome,
        error: Exception,
        started_at: datetime,
    ) -> ReconcileResult:
        # The link may have gained a target id before the failure.
        link = self.store.get_link(link.link_id) or link
        logger.error("Link %s: %s: %s", link.link_id, outcome.value, error)
        snapshot = self.machine.transition(
            snapshot,
            SyncState.FAILED,
            last_outcome=outcome,
            last_error=str(error),
        )
        self.store.put(snapshot)
        return self._result(
            link, outcome, started_at, snapshot=snapshot, error=str(error)
        )

    def _result(
        self,
        link: SyncLink,
        outcome: SyncOutcome,
        started_at: datetime,
        snapshot: SyncSnapshot | None = None,
        error: str | None = None,
    ) -> ReconcileResult:
        return ReconcileResult(
            link_id=link.link_id,
            source_document_id=link.source_document_id,
            target_language=link.target_language,
            outcome=outcome,
            state=snapshot.state if snapshot else None,
            target_document_id=link.target_document_id,
            error=error,
            started_at=started_at,
            completed_at=utcnow(),
        )

    # ------------------------------------------------------------------
    # Batch and maintenance operations
    # ------------------------------------------------------------------

    def scan(self, link_ids: Iterable[str] | None = None) -> list[SyncLink]:
        """Mark ``synced`` links whose source changed as ``out_of_sync``.

        Reads sources only; nothing is written to the repository.

        Returns:
            The links that were marked.
        """
        wanted = set(link_ids) if link_ids is not None else None
        marked: list[SyncLink] = []
        for snapshot in self.store.list_by_state(SyncState.SYNCED):
            if wanted is not None and snapshot.link_id not in wanted:
                continue
            link = self.store.get_link(snapshot.link_id)
            if link is None:
                continue
            try:
                with self.locks.hold(link.link_id):
                    current = self.store.get(link.link_id)
                    if current is None or current.state != SyncState.SYNCED:
                        continue
                    source = self._fetch_source(link)
                    if has_changed(source, current, self.registry):
                        self.store.put(
                            self.machine.transition(
                                current, SyncState.OUT_OF_SYNC
                            )
                        )
                        marked.append(link)
            except LockContentionError:
                continue
            except SyncError as exc:
                logger.warning(
                    "Scan skipped link %s: %s", link.link_id, exc
                )
        logger.info("Scan marked %d link(s) out of sync", len(marked))
        return marked

    def reset_stale_pending(self, now: datetime | None = None) -> list[str]:
        """Reclaim abandoned ``pending`` snapshots as ``failed``.

        Returns:
            Ids of the reclaimed links.
        """
        reclaimed: list[str] = []
        for snapshot in self.store.list_by_state(SyncState.PENDING):
            if not self.machine.is_stale(snapshot, now):
                continue
            try:
                with self.locks.hold(snapshot.link_id):
                    self.store.put(self.machine.reclaim(snapshot, now))
                    reclaimed.append(snapshot.link_id)
            except LockContentionError:
                continue
        if reclaimed:
            logger.info("Reclaimed %d stale pending link(s)", len(reclaimed))
        return reclaimed

    def pending_work(
        self, include_failed: bool = False
    ) -> list[tuple[int | str, str]]:
        """``(source_document_id, target_language)`` pairs needing a pass.

        Covers ``out_of_sync`` and never-completed ``not_linked`` links,
        plus ``failed`` ones when *include_failed* is set.
        """
        states = [SyncState.OUT_OF_SYNC, SyncState.NOT_LINKED]
        if include_failed:
            states.append(SyncState.FAILED)
        work: list[tuple[int | str, str]] = []
        for state in states:
            for snapshot in self.store.list_by_state(state):
                link = self.store.get_link(snapshot.link_id)
                if link is not None:
                    work.append(
                        (link.source_document_id, link.target_language)
                    )
        return work

    def reconcile_many(
        self, pairs: Sequence[tuple[int | str, str]]
    ) -> BatchReport:
        """Reconcile many links in parallel; results keep input order."""
        started_at = utcnow()
        if not pairs:
            return BatchReport(
                results=[], started_at=started_at, completed_at=utcnow()
            )
        workers = min(self.settings.max_workers, len(pairs))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="locale-sync-batch"
        ) as pool:
            results = list(
                pool.map(lambda pair: self.reconcile(pair[0], pair[1]), pairs)
            )
        report = BatchReport(
            results=results, started_at=started_at, completed_at=utcnow()
        )
        logger.info(
            "Batch of %d finished: %d created, %d updated, %d unchanged, %d failed",
            len(results),
            len(report.created),
            len(report.updated),
            len(report.unchanged),
            len(report.failed),
        )
        return report

    def close(self) -> None:
        """Shut down the worker pool if this orchestrator created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
