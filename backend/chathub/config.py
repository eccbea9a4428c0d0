"""Chathub application configuration.

Loads settings from ``chathub.settings.yaml``. Every section has defaults,
so a missing file yields a runnable in-process configuration:

  * server   — bind address for uvicorn
  * rooms    — configured room names, default room, dynamic room policy
  * storage  — DuckDB database path
  * history  — history replay and search limits
  * logging  — root log level
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chathub.settings.yaml")

DEFAULT_ROOMS = ["general", "random", "tech", "gaming"]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 5000


class RoomsSettings(BaseModel):
    """Room set seeding the directory.

    ``names`` keeps its configured order; clients rely on that order being
    stable across occupancy updates.
    """
    names:         List[str] = Field(default_factory=lambda: list(DEFAULT_ROOMS))
    default_room:  str       = "general"
    allow_dynamic: bool      = False

    @field_validator("names")
    @classmethod
    def _dedupe_names(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for name in value:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @model_validator(mode="after")
    def _include_default_room(self) -> "RoomsSettings":
        if not self.default_room:
            raise ValueError("rooms.default_room must not be empty")
        if self.default_room not in self.names:
            self.names.insert(0, self.default_room)
        return self


class StorageSettings(BaseModel):
    db_path: str = "chat.duckdb"


class HistorySettings(BaseModel):
    limit:        int = Field(default=50, gt=0)
    search_limit: int = Field(default=20, gt=0)


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    rooms:   RoomsSettings   = Field(default_factory=RoomsSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_db_path(db_path: str, settings_path: Path) -> str:
    """Resolve a relative database path against the settings file directory."""
    if db_path == ":memory:":
        return db_path
    path = Path(db_path)
    if path.is_absolute():
        return db_path
    return str(settings_path.parent / path)


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into a single *AppSettings* object."""
    path = Path(settings_path) if settings_path else SETTINGS_FILE
    data = _load_yaml(path)

    settings = AppSettings(**data)
    if path.exists():
        settings.storage.db_path = _resolve_db_path(settings.storage.db_path, path)

    logger.info(
        "Settings loaded (server=%s:%s, rooms=%s, db=%s)",
        settings.server.host,
        settings.server.port,
        settings.rooms.names,
        settings.storage.db_path,
    )
    return settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached settings (used by tests)."""
    global _config
    _config = None
