"""
Hierarchical configuration loader for locale_sync.

Provides convention-based config file discovery, YAML !include support
(handy for keeping a large ``policies`` table in its own file), env var
interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from locale_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LOCALE_SYNC_CONFIG"
PROJECT_DIR = ".locale_sync"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty VAR yields *default* when given, else ``""``.  A
    ``${`` with no closing brace is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) if match.group(2) is not None else ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader subclass that understands ``!include``.

    The global ``yaml.SafeLoader`` is left untouched.  Each load carries
    an include stack for cycle detection.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml`` directives."""
    raw: str = loader.construct_scalar(node)
    including_file = Path(loader.name).resolve()
    target = Path(raw)
    if not target.is_absolute():
        target = including_file.parent / target
    target = target.resolve()

    stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in stack:
        chain = " -> ".join(str(p) for p in [*stack, target])
        raise ValueError(f"Circular include detected: {chain}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {including_file})"
        )
    return _load_yaml_with_includes(target, _include_stack=[*stack, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths, highest precedence first.

    Search order:
        1. ``LOCALE_SYNC_CONFIG`` env var (explicit single path)
        2. ``.locale_sync/config.yml`` in CWD (project-level)
        3. ``.locale_sync/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/locale_sync/config.yml`` (XDG global)
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    project = Path.cwd() / PROJECT_DIR
    candidates.append(project / "config.yml")
    candidates.append(project / "config.yaml")
    candidates.append(Path.home() / ".config" / "locale_sync" / "config.yml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# locale-sync-server configuration
#
# Connection settings can also be set via environment variables:
#   LOCALE_SYNC_REPOSITORY_URL, LOCALE_SYNC_USERNAME, LOCALE_SYNC_PASSWORD,
#   LOCALE_SYNC_TRANSLATOR_URL, LOCALE_SYNC_TRANSLATOR_API_KEY
#
# repository:
#   url: https://cms.example.com
#   username: sync-bot
#   password: ${LOCALE_SYNC_PASSWORD}
#   post_type: posts
#   fields_key: acf
#   publish_status: draft
#
# translator:
#   url: https://translate.example.com/v1/translate
#   api_key: ${LOCALE_SYNC_TRANSLATOR_API_KEY}
#   timeout: 120
#
# sync:
#   source_language: fa
#   target_languages: [en, ar]
#   state_dir: .locale_sync
#   liveness_window_seconds: 900
#   conflict_strategy: surface   # or source-wins
#
# Field policies: translate, copy, copy-relationship, ignore.
# Glob patterns are allowed; unlisted fields are copied.
#
# policies:
#   description: translate
#   price: copy
#   city_ref: copy-relationship
#   "_edit_*": ignore
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the active config file, or the default project-level path
    when none exists yet. Does not create anything."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Ensure a config file exists, writing a commented starter if needed.

    Args:
        target: Explicit path to create. Defaults to
            ``resolve_config_path()``.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest precedence to highest; each file's
    top-level sections replace (not deep-merge) earlier ones.  Env var
    interpolation runs on the merged result.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
