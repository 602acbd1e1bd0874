"""
Exception taxonomy for the reconciliation engine.

Collaborators raise these; the orchestrator catches them and turns every
one of them into a ``ReconcileResult`` so nothing escapes ``reconcile()``.
"""


class SyncError(Exception):
    """Base exception for all reconciliation errors."""


class ValidationError(SyncError):
    """
    A translation payload failed schema validation.

    Raised when:
    - a required translate-policy key is missing
    - an unexpected key is present
    - a value has the wrong type or carries malformed markup
    - the translation service returned output that is not valid JSON

    Retried with a stricter request up to a bounded count.
    """

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class TransportError(SyncError):
    """
    Failure talking to the content repository or translation service.

    Covers network errors, authentication failures, rate limiting and
    timeouts. Retried with exponential backoff when ``retryable``.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class NotFoundError(SyncError):
    """The requested document does not exist in the repository."""

    def __init__(self, document_id, language: str | None = None):
        where = f" ({language})" if language else ""
        super().__init__(f"Document {document_id}{where} not found")
        self.document_id = document_id
        self.language = language


class ConflictError(SyncError):
    """
    The target document was modified outside the engine in a way that
    breaks the copy/relationship invariant. Never retried.
    """

    def __init__(
        self, message: str, drifted_fields: list[str] | None = None
    ):
        super().__init__(message)
        self.drifted_fields = drifted_fields or []


class LockContentionError(SyncError):
    """Another reconciliation for the same link is already in flight."""

    def __init__(self, link_id: str):
        super().__init__(f"Reconciliation already in progress for {link_id}")
        self.link_id = link_id


class IllegalTransitionError(SyncError):
    """A state change not allowed by the sync state machine."""

    def __init__(self, current, target):
        super().__init__(
            f"Illegal sync state transition: {current.value} -> {target.value}"
        )
        self.current = current
        self.target = target
