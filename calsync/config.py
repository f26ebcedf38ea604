"""
Tool: Sync Configuration
Purpose: Typed settings for recurrence, storage and calendar sync

Settings live in args/schedule_sync.yaml under a top-level ``schedule_sync``
key. A missing file yields defaults; out-of-range values raise pydantic's
ValidationError so a bad deploy fails loudly instead of syncing with
surprising limits.

Usage:
    from calsync.config import load_config
    config = load_config()
    config.sync.cooldown_seconds
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from calsync import CONFIG_PATH, DB_PATH, PROJECT_ROOT


logger = logging.getLogger(__name__)

CONFIG_FILE = CONFIG_PATH / "schedule_sync.yaml"


# =============================================================================
# Section models
# =============================================================================


class SyncSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    cooldown_seconds: int = Field(default=60, ge=10, le=900)
    horizon_past_days: int = Field(default=30, ge=0, le=366)
    horizon_future_days: int = Field(default=30, ge=1, le=366)
    outbound_enabled: bool = Field(default=True)
    inbound_enabled: bool = Field(default=True)
    detect_deletions: bool = Field(default=False)
    direction_timeout_seconds: float = Field(default=120.0, gt=0, le=3600)
    periodic_interval_seconds: int = Field(default=300, ge=10)
    max_backoff_minutes: int = Field(default=30, ge=1)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0)
    server_error_delay: float = Field(default=5.0, ge=0)
    calendar_id: str = Field(default="primary")
    timezone: str = Field(default="UTC")
    api_base_url: str = Field(default="https://www.googleapis.com/calendar/v3")


class InboundSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    placeholder_title: str = Field(default="synced from Google Calendar", min_length=1)
    match_tolerance_seconds: int = Field(default=60, ge=0, le=3600)
    imported_type: str = Field(default="meeting")
    collapse_duplicates: bool = Field(default=False)


class RecurrenceSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_occurrences: int = Field(default=100, ge=1, le=1000)
    materialize_horizon_days: int = Field(default=365, ge=1, le=3650)


class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    db_path: str = Field(default=str(DB_PATH))
    token_expiry_skew_seconds: int = Field(default=1800, ge=0)

    @property
    def resolved_db_path(self) -> Path:
        """db_path, relative paths taken from the project root."""
        path = Path(self.db_path)
        return path if path.is_absolute() else PROJECT_ROOT / path


class CalsyncConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    sync: SyncSettings = Field(default_factory=SyncSettings)
    inbound: InboundSettings = Field(default_factory=InboundSettings)
    recurrence: RecurrenceSettings = Field(default_factory=RecurrenceSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


# =============================================================================
# Loader
# =============================================================================


def load_config(path: str | Path | None = None) -> CalsyncConfig:
    """
    Load settings from YAML.

    Args:
        path: Config file; defaults to args/schedule_sync.yaml

    Returns:
        CalsyncConfig (defaults when the file does not exist)

    Raises:
        pydantic.ValidationError: a value is out of range
    """
    config_file = Path(path) if path else CONFIG_FILE

    if not config_file.exists():
        logger.info("No config at %s, using defaults", config_file)
        return CalsyncConfig()

    with open(config_file) as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    return CalsyncConfig.model_validate(raw.get("schedule_sync", raw))


__all__ = [
    "CalsyncConfig",
    "InboundSettings",
    "RecurrenceSettings",
    "StorageSettings",
    "SyncSettings",
    "load_config",
]
