"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config, build_registry
from ..core.async_utils import init_semaphore, run_sync
from ..core.repository import RestContentRepository
from ..core.translator import HttpTranslationService
from ..sync.engine import ReconciliationOrchestrator
from ..sync.store import SnapshotStore

logger = logging.getLogger(__name__)

_ENV_HINT = (
    "Ensure LOCALE_SYNC_REPOSITORY_URL, LOCALE_SYNC_USERNAME, "
    "LOCALE_SYNC_PASSWORD, LOCALE_SYNC_TRANSLATOR_URL are set."
)


@dataclass
class SyncRuntime:
    """Everything a tool handler needs, built once at startup."""

    config: Config
    unified: UnifiedConfig
    orchestrator: ReconciliationOrchestrator
    store: SnapshotStore
    repository: Any


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def build_runtime(
    config: Config,
    unified: UnifiedConfig,
    repository: Any = None,
    translator: Any = None,
) -> SyncRuntime:
    """Wire store, registry, collaborators and orchestrator together.

    *repository* and *translator* default to the HTTP adapters built
    from *config*.
    """
    repository = repository or RestContentRepository(config)
    translator = translator or HttpTranslationService(config)
    store = SnapshotStore(unified.sync.state_dir)
    orchestrator = ReconciliationOrchestrator(
        repository,
        translator,
        build_registry(unified),
        store,
        settings=unified.sync,
    )
    return SyncRuntime(
        config=config,
        unified=unified,
        orchestrator=orchestrator,
        store=store,
        repository=repository,
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config if present (sections and connection fallbacks)
    - Merge connection settings: CLI > env vars > .env > YAML > defaults
    - Build the orchestrator, validate the repository connection, and
      reclaim abandoned pending links

    On shutdown:
    - Stop the orchestrator's worker pool

    Yields:
        Dict with 'runtime' key containing the ``SyncRuntime``

    Raises:
        RuntimeError: If configuration is invalid or the repository is
            unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("Locale Sync Server starting...")

    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            username=overrides.get("username"),
            password=overrides.get("password"),
            translator_url=overrides.get("translator_url"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=unified.connection_fallbacks(),
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Repository URL: %s", config.repository_url)
        _stderr_print(f"  Repository URL: {config.repository_url}")

        runtime = build_runtime(config, unified)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  {_ENV_HINT}")
        raise RuntimeError(f"Configuration error: {e}. {_ENV_HINT}") from e

    logger.info("Validating repository connection...")
    _stderr_print("  Validating repository connection...")
    try:
        site = await run_sync(runtime.repository.validate_connection)
        logger.info("Connected to repository site '%s'", site)
        _stderr_print(f"  Connected to repository site '{site}'")
    except Exception as e:
        runtime.orchestrator.close()
        logger.error("Failed to connect to repository: %s", e)
        _stderr_print("ERROR: Repository connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Repository connection failed: {e}. {_ENV_HINT}"
        ) from e

    reclaimed = await run_sync(runtime.orchestrator.reset_stale_pending)
    if reclaimed:
        _stderr_print(f"  Reclaimed {len(reclaimed)} abandoned pending link(s)")
    init_semaphore(config.max_parallel_requests)
    _stderr_print(f"  Parallel reconciliations: {config.max_parallel_requests}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"runtime": runtime}
    finally:
        runtime.orchestrator.close()
        logger.info("MCP server shutting down")
        _stderr_print("Locale Sync Server shutting down.")
