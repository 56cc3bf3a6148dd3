"""Unified configuration schema for grocery_sync.

Defines Pydantic models for the YAML config file, with one section per
concern (server connection, sync storage, logging), plus the adapter that
turns it into fallbacks for the flat ``Config`` dataclass used at runtime.

Usage:
    from grocery_sync.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """Grocery server connection settings.

    All fields are optional so env vars and CLI args can supply them.
    """

    url: str | None = Field(default=None, description="Server base URL")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="HTTP timeout in seconds",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Local storage and sync scheduling settings.

    Attributes:
        db_path: SQLite database file.
        state_dir: Directory holding ``session.json``.
        inter_phase_delay: Seconds between the two requests of a
            two-phase sync.
    """

    db_path: str | None = Field(default=None, description="Database path")
    state_dir: str | None = Field(
        default=None, description="State directory"
    )
    inter_phase_delay: float = Field(
        default=0.2,
        ge=0,
        le=60,
        description="Delay between two-phase requests (seconds)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            ``None`` keeps the default of the logging mode.
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration; ``UnifiedConfig()`` is always valid."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        pydantic.ValidationError: If a value is out of range.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the server and sync sections into ``load_config`` fallbacks.

    ``None`` values are dropped so they never shadow built-in defaults.
    """
    flat = {
        **unified.server.model_dump(),
        **unified.sync.model_dump(),
    }
    return {k: v for k, v in flat.items() if v is not None}
