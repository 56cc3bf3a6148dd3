"""
Config file discovery and loading for grocery_sync.

YAML files may use ``!include other.yml`` and ``${VAR}`` /
``${VAR:-default}`` interpolation.  Several files are merged with
"project wins" semantics.

Usage:
    from grocery_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GROCERY_SYNC_CONFIG"
PROJECT_CONFIG = Path(".grocery_sync") / "config.yml"
USER_CONFIG = Path(".config") / "grocery_sync" / "config.yml"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to *default*, or to ``""`` when
    there is no default.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate(v) for v in obj]
    return obj


# ---------------------------------------------------------------------------
# YAML loading with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with ``!include``; the global SafeLoader is untouched."""


def _include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in stack:
        chain = " -> ".join(str(p) for p in stack + [target])
        raise ValueError(f"Circular include detected: {chain}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml(target, _stack=stack + [target])


ConfigLoader.add_constructor("!include", _include)


def load_yaml(path: Path, *, _stack: list[Path] | None = None) -> Any:
    """Parse one YAML file, resolving ``!include`` directives."""
    path = Path(path).resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``GROCERY_SYNC_CONFIG`` env var (explicit path)
        2. ``.grocery_sync/config.yml`` in CWD (project)
        3. ``~/.config/grocery_sync/config.yml`` (user)
    """
    candidates: list[Path] = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())
    candidates.append(Path.cwd() / PROJECT_CONFIG)
    candidates.append(Path.home() / USER_CONFIG)
    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# grocery-sync configuration
#
# Values can also be set via environment variables:
#   GROCERY_SYNC_URL, GROCERY_SYNC_DB, GROCERY_SYNC_STATE_DIR,
#   GROCERY_SYNC_TIMEOUT, GROCERY_SYNC_PHASE_DELAY, GROCERY_SYNC_INSECURE
#
# server:
#   url: https://grocery.example.com
#   insecure: false
#   request_timeout: 30
#
# sync:
#   db_path: .grocery_sync/grocery.db
#   state_dir: .grocery_sync
#   inter_phase_delay: 0.2
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a starter file if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``CWD / .grocery_sync / config.yml``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_CONFIG
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest precedence to highest; each file's
    top-level sections replace earlier ones wholesale.  Interpolation
    runs after the merge.

    Returns:
        The merged dict, empty when no config file exists.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        data = load_yaml(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
    return _interpolate(merged)
