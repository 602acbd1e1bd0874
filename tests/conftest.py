"""Shared pytest fixtures for locale-sync-server tests."""

from __future__ import annotations

import threading
from typing import Any, Callable

import pytest

from locale_sync.config import Config
from locale_sync.config_schema import BackoffConfig, SyncConfig, UnifiedConfig
from locale_sync.core.repository import InMemoryContentRepository
from locale_sync.mcp.lifespan import build_runtime
from locale_sync.sync.engine import ReconciliationOrchestrator
from locale_sync.sync.models import Document, TranslationRequest
from locale_sync.sync.policy import FieldPolicyRegistry
from locale_sync.sync.store import SnapshotStore


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live repository and translator",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTranslator:
    """Scriptable TranslationService.

    By default every text value is prefixed with ``[lang] `` and the slug
    gets a ``-lang`` suffix. ``responses`` (a list of mappings or
    exceptions) overrides the output call by call; ``hook`` runs before
    each call (used to mutate the source mid-flight).
    """

    def __init__(
        self,
        responses: list[Any] | None = None,
        hook: Callable[[TranslationRequest], None] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.hook = hook
        self.requests: list[TranslationRequest] = []
        self._lock = threading.Lock()

    def translate(self, request: TranslationRequest) -> dict[str, Any]:
        with self._lock:
            self.requests.append(request)
            scripted = self.responses.pop(0) if self.responses else None
        if self.hook is not None:
            self.hook(request)
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is not None:
            return dict(scripted)
        return default_translation(request)


class ReachableRepository(InMemoryContentRepository):
    """In-memory repository that also answers the startup probe."""

    def validate_connection(self) -> str:
        return "Example Homes"


def default_translation(request: TranslationRequest) -> dict[str, str]:
    """Mechanical translation that keeps markup intact."""
    lang = request.target_language
    result = {
        "title": f"[{lang}] {request.title}",
        "content": request.content.replace(">", f">[{lang}] ", 1)
        if request.content.startswith("<")
        else f"[{lang}] {request.content}",
        "slug": f"{request.slug}-{lang}",
    }
    for name, value in request.fields.items():
        result[name] = f"[{lang}] {value}"
    return result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

POLICIES = {
    "description": "translate",
    "price": "copy",
    "city_ref": "copy-relationship",
    "_edit_lock": "ignore",
}


@pytest.fixture
def mock_config():
    """Create a Config instance for adapter tests."""
    return Config(
        repository_url="https://cms.example.com",
        username="sync-bot",
        password="app-pass",
        translator_url="https://mt.example.com/translate",
        translator_api_key="secret-key",
    )


@pytest.fixture
def registry():
    """Field policy registry used across engine tests."""
    return FieldPolicyRegistry(POLICIES)


@pytest.fixture
def source_document():
    """A Persian source document with every policy kind represented."""
    return Document(
        id=318,
        language="fa",
        title="آپارتمان",
        body="<p>متن</p>",
        slug="apartment",
        fields={
            "description": "<strong>نوساز</strong>",
            "price": "1050",
            "city_ref": [{"id": 7}],
            "_edit_lock": "1700000000:1",
        },
    )


@pytest.fixture
def repository(source_document):
    """In-memory repository seeded with the source document."""
    return InMemoryContentRepository([source_document])


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def fast_settings():
    """Engine settings with instant retries."""
    return SyncConfig(
        source_language="fa",
        state_dir=None,
        backoff=BackoffConfig(
            max_attempts=3, initial_delay_ms=0, max_delay_ms=0, jitter=False
        ),
        call_timeout_seconds=5.0,
    )


@pytest.fixture
def make_orchestrator(registry, fast_settings):
    """Factory building orchestrators that are closed after the test."""
    created: list[ReconciliationOrchestrator] = []

    def _make(repository, translator, store=None, **kwargs):
        kwargs.setdefault("settings", fast_settings)
        kwargs.setdefault("sleep", lambda _seconds: None)
        orchestrator = ReconciliationOrchestrator(
            repository,
            translator,
            kwargs.pop("registry", registry),
            store if store is not None else SnapshotStore(),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.close()


@pytest.fixture
def sync_runtime(mock_config, source_document, fast_settings):
    """A SyncRuntime over in-memory collaborators, as tool handlers see it."""
    unified = UnifiedConfig(
        sync=fast_settings.model_copy(
            update={"target_languages": ["en", "ar"]}
        ),
        policies=POLICIES,
    )
    runtime = build_runtime(
        mock_config,
        unified,
        repository=ReachableRepository([source_document]),
        translator=FakeTranslator(),
    )
    yield runtime
    runtime.orchestrator.close()
