"""Application configuration management.

Settings are read from environment variables (optionally loaded from
environment-specific .env files) and exposed through the module-level
``settings`` singleton.
"""

import os
from enum import Enum
from pathlib import Path
from typing import (
    Dict,
    List,
    Optional,
)

from dotenv import load_dotenv


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


def get_environment() -> Environment:
    """Get the current environment from APP_ENV.

    Returns:
        Environment: The current environment (development by default).
    """
    env = os.getenv("APP_ENV", "development").lower()
    if env in ("production", "prod"):
        return Environment.PRODUCTION
    if env in ("staging", "stage"):
        return Environment.STAGING
    if env == "test":
        return Environment.TEST
    return Environment.DEVELOPMENT


def load_env_file() -> None:
    """Load the first environment file found for the current environment."""
    env = get_environment()
    base_dir = Path(__file__).resolve().parents[2]

    for name in (f".env.{env.value}.local", f".env.{env.value}", ".env.local", ".env"):
        env_file = base_dir / name
        if env_file.is_file():
            load_dotenv(dotenv_path=env_file)
            return


load_env_file()


def parse_list_from_env(env_key: str, default: Optional[List[str]] = None) -> List[str]:
    """Parse a comma-separated list from an environment variable."""
    value = os.getenv(env_key)
    if not value:
        return default or []

    value = value.strip("\"'")
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(env_key: str, default: bool) -> bool:
    value = os.getenv(env_key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "t", "yes", "y")


class Settings:
    """Application settings read from environment variables."""

    def __init__(self):
        """Initialize application settings from environment variables."""
        self.ENVIRONMENT = get_environment()

        # ─── Application ──────────────────────────────────────────
        self.PROJECT_NAME = os.getenv("PROJECT_NAME", "VoyageFlow")
        self.VERSION = os.getenv("VERSION", "1.0.0")
        self.API_V1_STR = os.getenv("API_V1_STR", "/api/v1")
        self.DEBUG = _env_bool("DEBUG", False)
        self.ALLOWED_ORIGINS = parse_list_from_env("ALLOWED_ORIGINS", ["*"])
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "8000"))

        # ─── Logging ──────────────────────────────────────────────
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "")

        # ─── Key-value store ──────────────────────────────────────
        self.REDIS_URL = os.getenv("REDIS_URL", "")
        self.CHECKPOINT_TTL_MINUTES = int(os.getenv("CHECKPOINT_TTL_MINUTES", "60"))
        self.STATE_REFERENCE_TTL_DAYS = int(os.getenv("STATE_REFERENCE_TTL_DAYS", "30"))
        self.COMPRESSION_THRESHOLD_BYTES = int(os.getenv("COMPRESSION_THRESHOLD_BYTES", "500"))
        self.INTENT_CACHE_TTL_SECONDS = int(os.getenv("INTENT_CACHE_TTL_SECONDS", str(7 * 24 * 3600)))

        # ─── Executor ─────────────────────────────────────────────
        self.EXECUTOR_MAX_CONCURRENCY = int(os.getenv("EXECUTOR_MAX_CONCURRENCY", "4"))
        self.DEFAULT_STAGE_TIMEOUT_MS = int(os.getenv("DEFAULT_STAGE_TIMEOUT_MS", "30000"))
        self.DEFAULT_PLAN_TIMEOUT_MS = int(os.getenv("DEFAULT_PLAN_TIMEOUT_MS", "120000"))
        self.DEFAULT_MAX_RETRIES = int(os.getenv("DEFAULT_MAX_RETRIES", "2"))
        self.DEFAULT_BACKOFF_MS = int(os.getenv("DEFAULT_BACKOFF_MS", "1000"))
        self.PLAN_CACHE_SIZE = int(os.getenv("PLAN_CACHE_SIZE", "128"))

        # ─── Circuit breaker ──────────────────────────────────────
        self.CIRCUIT_FAILURE_THRESHOLD = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
        self.CIRCUIT_ROLLING_WINDOW_SECONDS = float(os.getenv("CIRCUIT_ROLLING_WINDOW_SECONDS", "300"))
        self.CIRCUIT_RESET_TIMEOUT_SECONDS = float(os.getenv("CIRCUIT_RESET_TIMEOUT_SECONDS", "30"))
        self.CIRCUIT_CALL_TIMEOUT_SECONDS = float(os.getenv("CIRCUIT_CALL_TIMEOUT_SECONDS", "30"))

        # ─── Observability ────────────────────────────────────────
        self.OBSERVABILITY_INGEST_URL = os.getenv("OBSERVABILITY_INGEST_URL", "")
        self.OBSERVABILITY_API_TOKEN = os.getenv("OBSERVABILITY_API_TOKEN", "")
        self.OBSERVABILITY_DATASET = os.getenv("OBSERVABILITY_DATASET", "voyageflow")
        self.OBSERVABILITY_BATCH_SIZE = int(os.getenv("OBSERVABILITY_BATCH_SIZE", "100"))
        self.OBSERVABILITY_FLUSH_INTERVAL_SECONDS = float(os.getenv("OBSERVABILITY_FLUSH_INTERVAL_SECONDS", "1.0"))

        # ─── Catalog & tools ──────────────────────────────────────
        self.CATALOG_DIR = os.getenv("CATALOG_DIR", "")
        self.WORKFLOWS_DIR = os.getenv("WORKFLOWS_DIR", "")
        self.TOOL_SERVICE_BASE_URL = os.getenv("TOOL_SERVICE_BASE_URL", "http://localhost:8100/tools")
        self.TOOL_SERVICE_TIMEOUT_SECONDS = float(os.getenv("TOOL_SERVICE_TIMEOUT_SECONDS", "30"))

        self.apply_environment_settings()

    def apply_environment_settings(self) -> None:
        """Apply environment-specific overrides unless explicitly set."""
        env_settings: Dict[Environment, Dict[str, object]] = {
            Environment.DEVELOPMENT: {"DEBUG": True, "LOG_LEVEL": "DEBUG", "LOG_FORMAT": "console"},
            Environment.STAGING: {"DEBUG": False, "LOG_LEVEL": "INFO", "LOG_FORMAT": "json"},
            Environment.PRODUCTION: {"DEBUG": False, "LOG_LEVEL": "WARNING", "LOG_FORMAT": "json"},
            Environment.TEST: {"DEBUG": True, "LOG_LEVEL": "DEBUG", "LOG_FORMAT": "console"},
        }

        for key, value in env_settings.get(self.ENVIRONMENT, {}).items():
            if key.upper() not in os.environ:
                setattr(self, key, value)


settings = Settings()
