"""Courier application configuration.

Loads settings from two YAML files:
  * courier.settings.yaml: non-secret configuration
  * courier.secrets.yaml: secrets (never committed)

Both files are optional; missing files fall back to model defaults.
``COURIER_SETTINGS`` and ``COURIER_SECRETS`` override the file locations.
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

SETTINGS_FILE = Path("courier.settings.yaml")
SECRETS_FILE  = Path("courier.secrets.yaml")

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_db_path(value: str, base_dir: Path) -> str:
    """Resolve a relative database path against the settings directory."""
    if value == IN_MEMORY_DB or Path(value).is_absolute():
        return value
    return str(base_dir / value)


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
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class StorageSettings(BaseModel):
    messages_db_path: str = "messages.duckdb"
    users_db_path:    str = "users.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int = Field(default=60 * 24, ge=1)
    bcrypt_rounds:        int = Field(default=12, ge=4, le=31)


class ChatSettings(BaseModel):
    """Real-time delivery settings.

    Attributes:
        enforce_sender_identity: Reject ``send-message`` events whose sender
            is not one of the identities the connection has joined.
        max_content_length: Upper bound on message content, in characters.
        require_join_token: Require a login token on ``join`` whose user id
            matches the identity being joined.
    """
    enforce_sender_identity: bool = True
    max_content_length:      int  = Field(default=10_000, ge=1)
    require_join_token:      bool = False


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object.

    Relative database paths are resolved from the directory holding the
    settings file, so the service behaves the same regardless of the
    working directory it was started from.
    """
    settings_path = Path(
        settings_path or os.environ.get("COURIER_SETTINGS", SETTINGS_FILE)
    )
    secrets_path = Path(
        secrets_path or os.environ.get("COURIER_SECRETS", SECRETS_FILE)
    )

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)

    base_dir = settings_path.resolve().parent
    config.storage.messages_db_path = _resolve_db_path(
        config.storage.messages_db_path, base_dir
    )
    config.storage.users_db_path = _resolve_db_path(
        config.storage.users_db_path, base_dir
    )

    logger.info(
        "Settings loaded (server=%s:%s, messages_db=%s, enforce_sender_identity=%s)",
        config.server.host,
        config.server.port,
        config.storage.messages_db_path,
        config.chat.enforce_sender_identity,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide configuration (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached configuration so the next access reloads it."""
    global _config
    _config = None
