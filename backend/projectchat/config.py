"""Project chat application configuration.

Loads settings from a single YAML file:
  * projectchat.settings.yaml: server, chat protocol, storage and logging

The path can be overridden with the ``PROJECTCHAT_SETTINGS`` environment
variable. A missing file is not an error; every section has defaults.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("projectchat.settings.yaml")
SETTINGS_ENV_VAR = "PROJECTCHAT_SETTINGS"


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
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    reload:          bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class ChatSettings(BaseModel):
    """Socket protocol tuning."""
    typing_timeout_seconds: float = 2.0
    max_message_length:     int   = 5000
    outbound_queue_size:    int   = 256
    overflow_policy:        Literal["drop_oldest", "disconnect"] = "drop_oldest"

    @field_validator("typing_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("typing_timeout_seconds must be positive")
        return value

    @field_validator("outbound_queue_size", "max_message_length")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class StorageSettings(BaseModel):
    db_path: str = "projectchat.duckdb"


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def settings_path() -> Path:
    """Resolve the settings file, honouring the environment override."""
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


def load_settings(path: Path | None = None) -> AppSettings:
    """Load *path* (or the default settings file) into an *AppSettings*."""
    settings_data = _load_yaml(path or settings_path())
    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, db=%s, typing_timeout=%ss)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.chat.typing_timeout_seconds,
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Process-wide settings, loaded once on first use."""
    return load_settings()
