"""Connection configuration for the locale sync server.

Reads repository and translation service settings from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    LOCALE_SYNC_REPOSITORY_URL: Content repository site URL (required)
    LOCALE_SYNC_USERNAME: Repository username (required)
    LOCALE_SYNC_PASSWORD: Repository (application) password (required)
    LOCALE_SYNC_TRANSLATOR_URL: Translation endpoint URL (required)
    LOCALE_SYNC_TRANSLATOR_API_KEY: Bearer token for the endpoint (optional)
    LOCALE_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    LOCALE_SYNC_MAX_PARALLEL_REQUESTS: Max concurrent reconciliations (optional, default: 4)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class Config:
    repository_url: str
    username: str
    password: str
    translator_url: str
    translator_api_key: str = ""
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 4
    post_type: str = "posts"
    fields_key: str = "acf"
    publish_status: str = "draft"
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    translator_timeout: float = 120.0


def _validate_url(value: str, label: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {label} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(
            f"Invalid {label} '{value}': URL must include a hostname"
        )
    return value


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Normalizes URLs in place (whitespace and the repository URL's
    trailing slash are stripped).
    """
    config.repository_url = _validate_url(
        config.repository_url, "repository URL"
    ).removesuffix("/")
    config.translator_url = _validate_url(
        config.translator_url, "translator URL"
    )

    if not config.username.strip():
        raise ValueError(
            "Repository username cannot be empty. Set LOCALE_SYNC_USERNAME environment variable."
        )

    if not config.password.strip():
        raise ValueError(
            "Repository password cannot be empty. Set LOCALE_SYNC_PASSWORD environment variable."
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _required(
    cli_value: str | None,
    env_key: str,
    fallbacks: dict,
    fb_key: str,
    label: str,
    flag: str,
) -> str:
    value = cli_value or os.getenv(env_key) or fallbacks.get(fb_key)
    if not value:
        raise ValueError(
            f"{label} not found. Set {env_key} environment variable, "
            f"pass {flag} CLI argument, or add '{fb_key}' to config.yml."
        )
    return value.strip()


def load_config(
    url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    translator_url: str | None = None,
    translator_api_key: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        yaml_fallbacks: Flat dict from ``UnifiedConfig.connection_fallbacks()``.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config is missing after checking all
            sources, or a value is out of range.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    repository_url = _required(
        url, "LOCALE_SYNC_REPOSITORY_URL", fb, "url", "Repository URL", "--url"
    )
    repo_username = _required(
        username, "LOCALE_SYNC_USERNAME", fb, "username", "Repository username", "--username"
    )
    repo_password = _required(
        password, "LOCALE_SYNC_PASSWORD", fb, "password", "Repository password", "--password"
    )
    final_translator_url = _required(
        translator_url,
        "LOCALE_SYNC_TRANSLATOR_URL",
        fb,
        "translator_url",
        "Translator URL",
        "--translator-url",
    )
    final_api_key = (
        translator_api_key
        or os.getenv("LOCALE_SYNC_TRANSLATOR_API_KEY")
        or fb.get("translator_api_key")
        or ""
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("LOCALE_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("LOCALE_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    max_parallel_raw = os.getenv("LOCALE_SYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid LOCALE_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ValueError(
                f"Invalid LOCALE_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            )
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 4

    config = Config(
        repository_url=repository_url,
        username=repo_username,
        password=repo_password,
        translator_url=final_translator_url,
        translator_api_key=final_api_key.strip(),
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
        post_type=fb.get("post_type", "posts"),
        fields_key=fb.get("fields_key", "acf"),
        publish_status=fb.get("publish_status", "draft"),
        connect_timeout=float(fb.get("connect_timeout", 10.0)),
        read_timeout=float(fb.get("read_timeout", 60.0)),
        translator_timeout=float(fb.get("translator_timeout", 120.0)),
    )

    validate_config(config)

    return config
