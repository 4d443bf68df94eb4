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
    file = "file"
    redis = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Durable key-value store for config and native customer records
    CRM_STORE_BACKEND: StoreBackend = StoreBackend.file
    CRM_STORE_PATH: str = ".chargecrm/store.json"
    CRM_STORE_KEY_PREFIX: str = "chargecrm:"

    # Redis (only used when CRM_STORE_BACKEND=redis)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Vendor APIs
    HUBSPOT_API_BASE_URL: str = "https://api.hubapi.com"
    PIPEDRIVE_API_BASE_URL: str = "https://api.pipedrive.com/v1"
    CRM_HTTP_TIMEOUT: float | None = None  # None keeps the httpx default
    CRM_HTTP_MAX_ATTEMPTS: int = 1  # 1 disables transport retries

    # Listing
    CRM_DEFAULT_PAGE_SIZE: int = 100


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
