"""
Configuration management with schema validation.
Single source of truth for MemberDesk configuration.

Settings come from an optional data/settings.yaml (with ${VAR:default}
substitution) and are then overridden by environment variables.
"""

import os
import secrets
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .exceptions import ConfigError
from .logger import get_logger

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

DATA_DIR = Path("data")
SETTINGS_FILE = DATA_DIR / "settings.yaml"

MIN_SECRET_LENGTH = 32


class AppSettings(BaseModel):
    name: str = "MemberDesk"
    version: str = "1.0.0"
    environment: str = "development"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


class AuthSettings(BaseModel):
    session_secret: Optional[str] = None
    session_expiry_days: int = 7
    jwt_algorithm: str = "HS256"
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    privileged_names: List[str] = Field(default_factory=lambda: ["admin", "hart"])


class StorageSettings(BaseModel):
    users_file: str = "data/users.json"
    lock_timeout_seconds: float = 10.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = "logs/memberdesk.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class AdminSeedSettings(BaseModel):
    """First-run admin account. Skipped unless a password is configured."""
    email: str = "admin@local"
    password: Optional[str] = None


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    admin: AdminSeedSettings = Field(default_factory=AdminSeedSettings)


# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "ENVIRONMENT": ("app", "environment"),
    "CORS_ORIGINS": ("app", "cors_origins"),
    "SESSION_SECRET": ("auth", "session_secret"),
    "SESSION_EXPIRY_DAYS": ("auth", "session_expiry_days"),
    "BCRYPT_ROUNDS": ("auth", "bcrypt_rounds"),
    "PRIVILEGED_NAMES": ("auth", "privileged_names"),
    "USERS_FILE": ("storage", "users_file"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
    "LOG_FILE": ("logging", "file_path"),
    "ADMIN_EMAIL": ("admin", "email"),
    "ADMIN_PASSWORD": ("admin", "password"),
}


class ConfigManager:
    """Singleton configuration manager"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.settings_path = SETTINGS_FILE
        self._settings: Optional[Settings] = None

        self._initialized = True

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                else:
                    return os.getenv(var_expr, value)
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for var_name, (section, field) in ENV_OVERRIDES.items():
            raw = os.getenv(var_name)
            if raw is None or raw == "":
                continue
            value: Any = raw
            if field in ("privileged_names", "cors_origins"):
                value = [n.strip() for n in raw.split(",") if n.strip()]
            data.setdefault(section, {})[field] = value
        return data

    def load_settings(self, path: Optional[Path] = None) -> Settings:
        """Load settings.yaml (if present), apply env overrides, validate"""
        settings_path = Path(path) if path else self.settings_path
        raw_data: Dict[str, Any] = {}
        if settings_path.exists():
            try:
                with open(settings_path, "r", encoding="utf-8") as f:
                    raw_data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to read settings from {settings_path}: {e}")
            if not isinstance(raw_data, dict):
                raise ConfigError(f"Settings file {settings_path} must contain a mapping")

        processed = self._substitute_env_vars(raw_data)
        processed = self._apply_env_overrides(processed)
        try:
            self._settings = Settings(**processed)
        except ValueError as e:
            raise ConfigError(f"Invalid settings: {e}")
        return self._settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            return self.load_settings()
        return self._settings


def resolve_session_secret(settings: Settings) -> str:
    """
    Return the signing secret for this process.

    Production fails closed when SESSION_SECRET is unset or too short.
    Development falls back to an ephemeral random secret, so sessions do
    not survive a restart.
    """
    secret = settings.auth.session_secret
    if secret and len(secret) >= MIN_SECRET_LENGTH:
        return secret

    if settings.app.is_production:
        if not secret:
            raise ConfigError("SESSION_SECRET must be set in production")
        raise ConfigError(
            f"SESSION_SECRET must be at least {MIN_SECRET_LENGTH} characters in production"
        )

    logger.warning(
        "SESSION_SECRET not set or too short; using an ephemeral development secret",
        environment=settings.app.environment,
    )
    return secrets.token_urlsafe(48)


# Global instance
config_manager = ConfigManager()
