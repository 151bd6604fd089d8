"""Fellowship Chat application configuration.

Loads settings from two YAML files:
  * fellowship.settings.yaml: non-secret configuration
  * fellowship.secrets.yaml:  secrets (never committed)

Both paths can be overridden with the FELLOWSHIP_SETTINGS_FILE and
FELLOWSHIP_SECRETS_FILE environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("fellowship.settings.yaml")
SECRETS_FILE  = Path("fellowship.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class MessageSettings(BaseModel):
    """Message store location and list page size."""
    db_path:   str = "messages.duckdb"
    page_size: int = 100

    @field_validator("page_size")
    @classmethod
    def _positive_page_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("page_size must be at least 1")
        return v


class TypingSettings(BaseModel):
    """Seconds of silence before a typing indicator expires on its own."""
    quiescence_seconds: float = 3.0

    @field_validator("quiescence_seconds")
    @classmethod
    def _positive_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("quiescence_seconds must be positive")
        return v


class RealtimeSettings(BaseModel):
    # 4401 mirrors HTTP 401 in the 4000-4999 application range.
    reject_close_code: int = 4401


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    messages: MessageSettings  = Field(default_factory=MessageSettings)
    typing:   TypingSettings   = Field(default_factory=TypingSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_path or Path(
        os.environ.get("FELLOWSHIP_SETTINGS_FILE", SETTINGS_FILE)
    )
    secrets_path = secrets_path or Path(
        os.environ.get("FELLOWSHIP_SECRETS_FILE", SECRETS_FILE)
    )

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, messages.db_path=%s, typing.quiescence=%.1fs)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.messages.db_path,
        app_settings.typing.quiescence_seconds,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget the cached settings so the next get_config() reloads them."""
    global _config
    _config = None
