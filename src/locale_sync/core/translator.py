"""Translation service collaborators.

The engine hands a ``TranslationRequest`` to a ``TranslationService`` and
gets back a raw mapping of key -> translated text.  The mapping is
untrusted: the engine validates it before anything reaches the merge
step, so adapters only deal with transport and JSON syntax.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from typing import Any, Protocol

import requests

from ..config import Config
from ..sync.models import TranslationRequest
from .exceptions import TransportError, ValidationError

logger = logging.getLogger(__name__)

# ```json ... ``` wrappers that LLM-backed endpoints like to add
_CODE_FENCE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class TranslationService(Protocol):
    """Contract the reconciliation engine requires from a translator."""

    def translate(self, request: TranslationRequest) -> dict[str, Any]:
        """Translate *request*.

        Returns:
            A mapping with the request's expected keys.

        Raises:
            TransportError: Network, auth, rate-limit or server failure.
            ValidationError: Output that is not syntactically valid JSON.
        """
        ...  # pragma: no cover


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text.strip()


def parse_translation_text(text: str) -> dict[str, Any]:
    """Parse a JSON object out of free-form service output.

    Raises:
        ValidationError: If the text is not a JSON object.
    """
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise ValidationError(
            f"Translation output is not valid JSON: {exc.msg} at position {exc.pos}"
        ) from exc
    if not isinstance(data, dict):
        raise ValidationError(
            f"Translation output must be a JSON object, got {type(data).__name__}"
        )
    return data


def extract_translation(body: Any) -> dict[str, Any]:
    """Unwrap the translated mapping from an endpoint response body.

    Accepts the mapping itself, ``{"translation": {...}}``, or either of
    those carried as a JSON string.
    """
    if isinstance(body, dict) and "translation" in body:
        body = body["translation"]
    if isinstance(body, str):
        return parse_translation_text(body)
    if not isinstance(body, dict):
        raise ValidationError(
            f"Translation output must be a JSON object, got {type(body).__name__}"
        )
    return body


class HttpTranslationService:
    """Post translation requests as JSON to an HTTP endpoint.

    Prompt construction and model choice live behind the endpoint; this
    adapter only moves ``TranslationRequest.to_payload()`` across the wire.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            if self.config.translator_api_key:
                session.headers["Authorization"] = (
                    f"Bearer {self.config.translator_api_key}"
                )
            session.verify = not self.config.insecure
            self._thread_local.session = session
        return self._thread_local.session

    def translate(self, request: TranslationRequest) -> dict[str, Any]:
        url = self.config.translator_url
        logger.debug(
            "Translating document %s %s -> %s (attempt %d, strict=%s)",
            request.source_document_id,
            request.source_language,
            request.target_language,
            request.attempt,
            request.strict,
        )
        try:
            response = self._get_session().post(
                url,
                json=request.to_payload(),
                timeout=(
                    self.config.connect_timeout,
                    self.config.translator_timeout,
                ),
            )
        except requests.Timeout as exc:
            raise TransportError(f"Translation request timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Translation request failed: {exc}") from exc

        status = response.status_code
        if status >= 400:
            raise TransportError(
                f"Translation service returned HTTP {status}: {response.text[:200]}",
                retryable=status == 429 or status >= 500,
                status_code=status,
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text
        return extract_translation(body)
