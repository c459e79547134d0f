"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StoreBackend(str, Enum):
    memory = "memory"
    http = "http"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Reconciliation
    DEFAULT_PARTITION: str = "2"  # Subsidiary every synced item belongs to
    RECONCILIATION_POLICY_VERSION: str = "v4"

    # External record store
    STORE_BACKEND: StoreBackend = StoreBackend.memory
    STORE_BASE_URL: str = ""
    STORE_TOKEN: str = ""
    STORE_TIMEOUT: float = 30.0

    # Outbound change notifications
    NOTIFIER_WEBHOOK_URL: str = ""
    NOTIFIER_WEBHOOK_SECRET: str = ""
    NOTIFIER_TIMEOUT: float = 10.0
    NOTIFIER_USER_AGENT: str = "itemsync-webhook/1.0"

    # Inbound change events (receiver side)
    INBOUND_WEBHOOK_SECRET: str = ""


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
