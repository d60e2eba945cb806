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

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Entity map backend: "memory" (dicts) or "sql" (SQLAlchemy key/document table)
    STORE_BACKEND: Literal["memory", "sql"] = "memory"

    # Only used by the sql backend; the default is an in-memory SQLite database
    DATABASE_URL: str = "sqlite://"

    # Request limits enforced by the HTTP layer
    SEARCH_MAX_LIMIT: int = 200
    ANALYTICS_MAX_BATCH: int = 100


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
