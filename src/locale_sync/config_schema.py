"""Unified configuration schema for locale_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the content repository, the translation service, the sync
engine, field policies, and logging. Includes adapter functions that turn
the unified config into the connection ``Config`` dataclass, the field
policy registry, and retry settings.

Usage:
    from locale_sync.config_schema import (
        UnifiedConfig, build_config, build_registry, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    registry = build_registry(unified)
    legacy = to_legacy_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from .config import Config
    from .core.retry import RetryConfig
    from .sync.policy import FieldPolicyRegistry

logger = logging.getLogger(__name__)

PolicyName = Literal["translate", "copy", "copy-relationship", "ignore"]

_RESERVED = frozenset({"title", "content", "body", "slug"})


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RepositoryConfig(BaseModel):
    """Content repository connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(
        default=None, description="Repository site URL"
    )
    username: str | None = Field(
        default=None, description="Repository username"
    )
    password: str | None = Field(
        default=None, description="Repository (application) password"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    post_type: str = Field(
        default="posts", description="REST collection holding documents"
    )
    fields_key: str = Field(
        default="acf", description="Response key carrying custom fields"
    )
    publish_status: str = Field(
        default="draft", description="Status given to created targets"
    )
    connect_timeout: float = Field(default=10.0, gt=0, le=300)
    read_timeout: float = Field(default=60.0, gt=0, le=3600)
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum concurrent reconciliations (1-100)",
    )

    model_config = {"frozen": True}


class TranslatorConfig(BaseModel):
    """Translation service endpoint."""

    url: str | None = Field(
        default=None, description="Translation endpoint URL"
    )
    api_key: str | None = Field(
        default=None, description="Bearer token for the endpoint"
    )
    timeout: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Read timeout for one translation call (seconds)",
    )

    model_config = {"frozen": True}


class BackoffConfig(BaseModel):
    """Exponential backoff for transport failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay_ms: float = Field(default=500.0, ge=0)
    max_delay_ms: float = Field(default=8000.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True

    model_config = {"frozen": True}

    def to_retry_config(self) -> RetryConfig:
        from .core.retry import RetryConfig

        return RetryConfig(
            max_attempts=self.max_attempts,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.multiplier,
            jitter=self.jitter,
        )


class SyncConfig(BaseModel):
    """Reconciliation engine settings.

    Attributes:
        source_language: Language of source documents.
        target_languages: Languages ``pending_work`` and batch runs cover.
        state_dir: Directory for ``sync_state.json``; ``None`` keeps state
            in memory only.
        liveness_window_seconds: Age after which a ``pending`` snapshot is
            treated as abandoned.
        call_timeout_seconds: Hard bound on any single collaborator call.
        backoff: Transport retry settings.
        validation_attempts: Translation attempts before a link fails
            validation (each retry uses a stricter request).
        max_restarts: Restarts allowed when the source changes while a
            translation is in flight.
        conflict_strategy: ``surface`` or ``source-wins``.
        max_workers: Worker threads for collaborator calls.
        default_policy: Policy for field names no entry matches.
    """

    source_language: str = "en"
    target_languages: list[str] = Field(default_factory=list)
    state_dir: str | None = ".locale_sync"
    liveness_window_seconds: int = Field(default=900, ge=1)
    call_timeout_seconds: float = Field(default=180.0, gt=0, le=3600)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    validation_attempts: int = Field(default=3, ge=1, le=10)
    max_restarts: int = Field(default=2, ge=0, le=10)
    conflict_strategy: Literal["surface", "source-wins"] = "surface"
    max_workers: int = Field(default=8, ge=1, le=64)
    default_policy: PolicyName = "copy"

    model_config = {"frozen": True}

    @property
    def liveness_window(self) -> timedelta:
        return timedelta(seconds=self.liveness_window_seconds)

    @field_validator("target_languages")
    @classmethod
    def _no_duplicate_languages(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("target_languages contains duplicates")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    translator: TranslatorConfig = Field(default_factory=TranslatorConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    policies: dict[str, PolicyName] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @field_validator("policies")
    @classmethod
    def _no_reserved_names(
        cls, value: dict[str, PolicyName]
    ) -> dict[str, PolicyName]:
        reserved = sorted(_RESERVED & set(value))
        if reserved:
            raise ValueError(
                f"Reserved names cannot carry a field policy: {reserved}"
            )
        return value

    def connection_fallbacks(self) -> dict:
        """Non-None connection values, keyed as ``load_config`` expects."""
        values = {
            k: v
            for k, v in self.repository.model_dump().items()
            if v is not None
        }
        if self.translator.url is not None:
            values["translator_url"] = self.translator.url
        if self.translator.api_key is not None:
            values["translator_api_key"] = self.translator.api_key
        values["translator_timeout"] = self.translator.timeout
        return values


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def build_registry(unified: UnifiedConfig) -> FieldPolicyRegistry:
    """Build the read-only field policy registry from the ``policies``
    section."""
    from .sync.models import FieldPolicyKind
    from .sync.policy import FieldPolicyRegistry

    return FieldPolicyRegistry(
        unified.policies,
        default=FieldPolicyKind(unified.sync.default_policy),
    )


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> legacy Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass,
    applying CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value > empty

    CLI overrides dict keys: url, username, password, translator_url,
    translator_api_key, insecure, debug.

    Returns:
        ``Config`` instance (NOT validated; caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports
    from .config import Config

    overrides = cli_overrides or {}
    repo = unified.repository

    return Config(
        repository_url=overrides.get("url") or repo.url or "",
        username=overrides.get("username") or repo.username or "",
        password=overrides.get("password") or repo.password or "",
        translator_url=overrides.get("translator_url")
        or unified.translator.url
        or "",
        translator_api_key=overrides.get("translator_api_key")
        or unified.translator.api_key
        or "",
        insecure=overrides.get("insecure", False) or repo.insecure,
        debug=overrides.get("debug", False) or repo.debug,
        max_parallel_requests=repo.max_parallel_requests,
        post_type=repo.post_type,
        fields_key=repo.fields_key,
        publish_status=repo.publish_status,
        connect_timeout=repo.connect_timeout,
        read_timeout=repo.read_timeout,
        translator_timeout=unified.translator.timeout,
    )
