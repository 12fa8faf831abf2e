"""Configuration management loaded from the environment."""

import os
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load .env files from project root; variables already in the environment win
project_root = Path(__file__).parent.parent.parent
for env_name in (".env.local", ".env"):
    env_file = project_root / env_name
    if env_file.exists():
        load_dotenv(dotenv_path=env_file, override=False)


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


LOOPBACK_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable among names."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value.strip()
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


class Config:
    """Gateway configuration.

    Values are read when the object is created, so tests can build a Config
    after patching the environment.
    """

    def __init__(self):
        # Upstream generative search (required)
        self.GEMINI_API_KEY: Optional[str] = _env("GEMINI_API_KEY")
        self.GEMINI_API_BASE: str = _env(
            "GEMINI_API_BASE",
            default="https://generativelanguage.googleapis.com/v1beta",
        )
        self.DEFAULT_MODEL: str = _env("DEFAULT_MODEL", default="gemini-2.5-flash")
        self.UPSTREAM_TIMEOUT_SECONDS: float = _env_float("UPSTREAM_TIMEOUT_SECONDS", 60.0)

        # Backing store (optional; absence means open mode without tenants)
        self.SUPABASE_URL: Optional[str] = _env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
        self.SUPABASE_ANON_KEY: Optional[str] = _env(
            "SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"
        )
        self.BACKING_STORE_TIMEOUT_SECONDS: float = _env_float("BACKING_STORE_TIMEOUT_SECONDS", 10.0)

        # Links and CORS
        self.PUBLIC_BASE_URL: str = _env(
            "PUBLIC_BASE_URL", "APP_URL", default="http://localhost:3000"
        ).rstrip("/")
        self.CORS_ORIGINS: List[str] = self._parse_origins(os.getenv("CORS_ORIGINS", ""))

        # Server
        self.PORT: int = _env_int("MCP_PORT", 3001)
        self.APP_ENV: str = os.getenv("APP_ENV", "development")
        self.DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

        # Sessions, caches and buffers
        self.HEARTBEAT_INTERVAL_SECONDS: float = _env_float("HEARTBEAT_INTERVAL_SECONDS", 15.0)
        self.AUTH_CACHE_TTL_SECONDS: float = _env_float("AUTH_CACHE_TTL_SECONDS", 30.0)
        self.SETTINGS_CACHE_TTL_SECONDS: float = _env_float("SETTINGS_CACHE_TTL_SECONDS", 30.0)
        self.SESSION_HISTORY_SIZE: int = _env_int("SESSION_HISTORY_SIZE", 50)
        self.ACTIVITY_LOG_SIZE: int = _env_int("ACTIVITY_LOG_SIZE", 200)

    def _parse_origins(self, raw: str) -> List[str]:
        origins = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
        defaults = [self.PUBLIC_BASE_URL] + LOOPBACK_ORIGINS
        # Keep order, drop duplicates
        return list(dict.fromkeys(defaults))

    @property
    def backing_store_configured(self) -> bool:
        """True when both the backing store URL and key are present."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY)

    def validate(self) -> None:
        """
        Check required settings.

        Raises:
            ConfigError: If the upstream API key is missing or a tunable is out of range
        """
        if not self.GEMINI_API_KEY:
            raise ConfigError(
                "GEMINI_API_KEY is not set. The gateway cannot answer queries without "
                "an upstream API key; set it in the environment or in .env.local."
            )
        if self.HEARTBEAT_INTERVAL_SECONDS <= 0:
            raise ConfigError("HEARTBEAT_INTERVAL_SECONDS must be positive")
        if self.SESSION_HISTORY_SIZE < 1 or self.ACTIVITY_LOG_SIZE < 1:
            raise ConfigError("SESSION_HISTORY_SIZE and ACTIVITY_LOG_SIZE must be at least 1")


def load_config() -> Config:
    """Build a Config from the current environment and validate it."""
    config = Config()
    config.validate()
    return config
