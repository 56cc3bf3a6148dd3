"""Runtime configuration for the sync client.

Reads server and storage settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GROCERY_SYNC_URL: Server base URL (required)
    GROCERY_SYNC_DB: SQLite database path (optional, default: .grocery_sync/grocery.db)
    GROCERY_SYNC_STATE_DIR: Directory for session.json (optional, default: .grocery_sync)
    GROCERY_SYNC_TIMEOUT: HTTP timeout in seconds (optional, default: 30)
    GROCERY_SYNC_PHASE_DELAY: Seconds between two-phase requests (optional, default: 0.2)
    GROCERY_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    GROCERY_SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".grocery_sync"
DEFAULT_DB_PATH = ".grocery_sync/grocery.db"
DEFAULT_TIMEOUT = 30.0
DEFAULT_PHASE_DELAY = 0.2


@dataclass
class Config:
    server_url: str
    db_path: str = DEFAULT_DB_PATH
    state_dir: str = DEFAULT_STATE_DIR
    request_timeout: float = DEFAULT_TIMEOUT
    inter_phase_delay: float = DEFAULT_PHASE_DELAY
    insecure: bool = False
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a number is out of range.
    """
    config.server_url = config.server_url.strip()

    if not config.server_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid server URL '{config.server_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.server_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid server URL '{config.server_url}': URL must include a hostname"
        )

    config.server_url = config.server_url.removesuffix("/")

    if not config.db_path.strip():
        raise ValueError(
            "Database path cannot be empty. Set GROCERY_SYNC_DB environment variable."
        )

    if config.request_timeout <= 0:
        raise ValueError(
            f"Invalid request timeout {config.request_timeout}: must be positive"
        )

    if config.inter_phase_delay < 0:
        raise ValueError(
            f"Invalid phase delay {config.inter_phase_delay}: must not be negative"
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


def _get_float(
    env_key: str, fallbacks: dict, fb_key: str, default: float
) -> float:
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            return float(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number"
            ) from None
    if fb_key in fallbacks:
        return float(fallbacks[fb_key])
    return default


def load_config(
    url: str | None = None,
    db_path: str | None = None,
    state_dir: str | None = None,
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
        url: Override server URL.
        db_path: Override database path.
        state_dir: Override state directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the server URL is missing after checking all
            sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    server_url = url or os.getenv("GROCERY_SYNC_URL") or fb.get("url")
    if not server_url:
        raise ValueError(
            "Server URL not found. Set GROCERY_SYNC_URL environment variable, "
            "pass --url CLI argument, or add 'server.url' to config.yml."
        )

    final_db = (
        db_path
        or os.getenv("GROCERY_SYNC_DB")
        or fb.get("db_path")
        or DEFAULT_DB_PATH
    )
    final_state = (
        state_dir
        or os.getenv("GROCERY_SYNC_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("GROCERY_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("GROCERY_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    config = Config(
        server_url=server_url,
        db_path=final_db,
        state_dir=final_state,
        request_timeout=_get_float(
            "GROCERY_SYNC_TIMEOUT", fb, "request_timeout", DEFAULT_TIMEOUT
        ),
        inter_phase_delay=_get_float(
            "GROCERY_SYNC_PHASE_DELAY",
            fb,
            "inter_phase_delay",
            DEFAULT_PHASE_DELAY,
        ),
        insecure=final_insecure,
        debug=final_debug,
    )

    validate_config(config)

    return config
