from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    # e.g. sqlite+aiosqlite:///./inbox.db, or memory:// for a process-local store
    DATABASE_URL: str

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Number used to tell business-sent messages apart when the webhook
    # metadata does not carry one
    BUSINESS_NUMBER: str = "918329446654"

    # How strictly status transitions must follow sent -> delivered -> read
    STATUS_TRANSITION_POLICY: Literal["forward", "strict", "permissive"] = "forward"

    # Demo status progression
    STATUS_SIMULATION_ENABLED: bool = False
    STATUS_SIMULATION_INTERVAL_SECONDS: float = 15.0

    # Batch payload processing
    WEBHOOK_FILES_DIR: str = "./webhook_payloads"
    WEBHOOK_FILES_DELAY_SECONDS: float = 0.1


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
