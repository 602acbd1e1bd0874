"""Content repository collaborators.

``ContentRepository`` is the contract the engine consumes.  Two adapters
ship with it:

- ``RestContentRepository`` talks to a WordPress-style REST API whose
  language plugin exposes ``lang`` and a ``translations`` map per post,
  with custom fields under a configurable key (``acf`` by default).
- ``InMemoryContentRepository`` keeps documents in a dict; used for tests
  and local dry runs.

Both raise ``NotFoundError`` for missing documents and (REST only)
``TransportError`` for network, auth and server failures.
"""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from ..config import Config
from ..sync.models import Document, SyncLink, TargetFieldSet
from .exceptions import NotFoundError, TransportError

logger = logging.getLogger(__name__)


class ContentRepository(Protocol):
    """Contract the reconciliation engine requires from a content store."""

    def get_document(self, document_id: int | str, language: str) -> Document:
        """Fetch one language variant.

        Raises:
            NotFoundError: If no such document exists in *language*.
        """
        ...  # pragma: no cover

    def create_document(
        self,
        language: str,
        target: TargetFieldSet,
        link: SyncLink | None = None,
    ) -> Document:
        """Create a document and, given *link*, register it as the
        translation of the link's source. Returns the created document."""
        ...  # pragma: no cover

    def update_document(
        self, document_id: int | str, target: TargetFieldSet
    ) -> Document:
        """Replace title, body, slug and the given fields of a document."""
        ...  # pragma: no cover

    def find_linked_document(
        self, source_id: int | str, target_language: str
    ) -> int | str | None:
        """Return the id of *source_id*'s translation in *target_language*."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# REST adapter
# ---------------------------------------------------------------------------


def _rendered(value: Any) -> str:
    """WordPress returns ``{"raw": ..., "rendered": ...}`` in edit context."""
    if isinstance(value, dict):
        return value.get("raw", value.get("rendered", "")) or ""
    return value or ""


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class RestContentRepository:
    """``requests``-based client for a WordPress-style REST API.

    Args:
        config: Connection settings (URL, credentials, post type, field
            key, publish status, timeouts).
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = (
            f"{config.repository_url.rstrip('/')}/wp-json/wp/v2/{config.post_type}"
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.auth = (self.config.username, self.config.password)
            session.verify = not self.config.insecure
            self._thread_local.session = session
        return self._thread_local.session

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        not_found: tuple[Any, str | None] | None = None,
    ) -> Any:
        """Issue a request and map failures onto the error taxonomy."""
        try:
            response = self._get_session().request(
                method,
                url,
                params=params,
                json=json,
                timeout=(
                    self.config.connect_timeout,
                    self.config.read_timeout,
                ),
            )
        except requests.Timeout as exc:
            raise TransportError(f"{method} {url} timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        status = response.status_code
        if status == 404 and not_found is not None:
            raise NotFoundError(*not_found)
        if status >= 400:
            retryable = status == 429 or status >= 500
            raise TransportError(
                f"{method} {url} returned HTTP {status}: {response.text[:200]}",
                retryable=retryable,
                status_code=status,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} {url} returned a non-JSON body"
            ) from exc

    def _to_document(self, data: dict, language: str) -> Document:
        return Document(
            id=data["id"],
            language=data.get("lang") or language,
            title=_rendered(data.get("title")),
            body=_rendered(data.get("content")),
            slug=data.get("slug", ""),
            fields=data.get(self.config.fields_key) or {},
            modified_at=_parse_timestamp(
                data.get("modified_gmt") or data.get("modified")
            ),
        )

    def _to_body(self, target: TargetFieldSet) -> dict[str, Any]:
        return {
            "title": target.title,
            "content": target.body,
            "slug": target.slug,
            self.config.fields_key: target.fields,
        }

    # ------------------------------------------------------------------
    # ContentRepository
    # ------------------------------------------------------------------

    def validate_connection(self) -> str:
        """Return the site name; raises ``TransportError`` if unreachable."""
        data = self._request(
            "GET", f"{self.config.repository_url.rstrip('/')}/wp-json/"
        )
        return data.get("name", "unknown") if isinstance(data, dict) else "unknown"

    def get_document(self, document_id: int | str, language: str) -> Document:
        data = self._request(
            "GET",
            f"{self.base_url}/{document_id}",
            params={"context": "edit", "lang": language},
            not_found=(document_id, language),
        )
        lang = data.get("lang")
        if lang and lang != language:
            raise NotFoundError(document_id, language)
        return self._to_document(data, language)

    def create_document(
        self,
        language: str,
        target: TargetFieldSet,
        link: SyncLink | None = None,
    ) -> Document:
        body = self._to_body(target)
        body["lang"] = language
        body["status"] = self.config.publish_status
        if link is not None:
            body["translations"] = {
                link.source_language: link.source_document_id
            }
        data = self._request(
            "POST", self.base_url, params={"context": "edit"}, json=body
        )
        logger.info(
            "Created %s document %s in %s",
            self.config.post_type,
            data.get("id"),
            language,
        )
        return self._to_document(data, language)

    def update_document(
        self, document_id: int | str, target: TargetFieldSet
    ) -> Document:
        data = self._request(
            "POST",
            f"{self.base_url}/{document_id}",
            params={"context": "edit"},
            json=self._to_body(target),
            not_found=(document_id, None),
        )
        return self._to_document(data, data.get("lang", ""))

    def find_linked_document(
        self, source_id: int | str, target_language: str
    ) -> int | str | None:
        try:
            data = self._request(
                "GET",
                f"{self.base_url}/{source_id}",
                params={"context": "edit", "_fields": "id,lang,translations"},
                not_found=(source_id, None),
            )
        except NotFoundError:
            return None
        translations = data.get("translations") or {}
        return translations.get(target_language)


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


class InMemoryContentRepository:
    """Dict-backed repository with translation links.

    ``write_calls`` records every create/update as ``(operation, id)`` so
    callers can assert on repository traffic.
    """

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._lock = threading.Lock()
        self._documents: dict[tuple[str, str], Document] = {}
        self._translations: dict[tuple[str, str], int | str] = {}
        self._ids = itertools.count(1000)
        self.write_calls: list[tuple[str, int | str]] = []
        for document in documents or []:
            self.put_document(document)

    @staticmethod
    def _key(document_id: int | str, language: str) -> tuple[str, str]:
        return (str(document_id), language)

    def put_document(self, document: Document) -> Document:
        """Insert or replace *document* without counting it as a write."""
        with self._lock:
            self._documents[self._key(document.id, document.language)] = document
        return document

    def edit_document(
        self, document_id: int | str, language: str, **changes: Any
    ) -> Document:
        """Apply an out-of-band edit, as a human editor would.

        ``fields`` in *changes* is merged into the existing fields.
        """
        with self._lock:
            key = self._key(document_id, language)
            current = self._documents[key]
            update = dict(changes)
            if "fields" in update:
                update["fields"] = {**current.fields, **update["fields"]}
            update["modified_at"] = datetime.now(timezone.utc)
            edited = current.model_copy(update=update)
            self._documents[key] = edited
            return edited

    def get_document(self, document_id: int | str, language: str) -> Document:
        with self._lock:
            document = self._documents.get(self._key(document_id, language))
        if document is None:
            raise NotFoundError(document_id, language)
        return document

    def create_document(
        self,
        language: str,
        target: TargetFieldSet,
        link: SyncLink | None = None,
    ) -> Document:
        with self._lock:
            document = Document(
                id=next(self._ids),
                language=language,
                title=target.title,
                body=target.body,
                slug=target.slug,
                fields=dict(target.fields),
                modified_at=datetime.now(timezone.utc),
            )
            self._documents[self._key(document.id, language)] = document
            if link is not None:
                self._translations[
                    (str(link.source_document_id), language)
                ] = document.id
            self.write_calls.append(("create", document.id))
        return document

    def update_document(
        self, document_id: int | str, target: TargetFieldSet
    ) -> Document:
        with self._lock:
            key = next(
                (k for k in self._documents if k[0] == str(document_id)),
                None,
            )
            if key is None:
                raise NotFoundError(document_id)
            current = self._documents[key]
            document = current.model_copy(
                update={
                    "title": target.title,
                    "body": target.body,
                    "slug": target.slug,
                    "fields": {**current.fields, **target.fields},
                    "modified_at": datetime.now(timezone.utc),
                }
            )
            self._documents[key] = document
            self.write_calls.append(("update", document_id))
        return document

    def find_linked_document(
        self, source_id: int | str, target_language: str
    ) -> int | str | None:
        with self._lock:
            return self._translations.get((str(source_id), target_language))
