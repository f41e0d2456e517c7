"""Client configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CredentialBackend = Literal["file", "redis", "memory"]


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Backend API
    api_base_url: str = Field(
        default="http://localhost:3001/api",
        validation_alias="BOOKSHELF_API_URL",
    )
    request_timeout: float = Field(default=30.0, validation_alias="BOOKSHELF_API_TIMEOUT")

    # Credential store - where the session token and cached user record live
    credential_backend: CredentialBackend = Field(
        default="file", validation_alias="BOOKSHELF_CREDENTIAL_BACKEND",
    )
    credential_file: Path = Field(
        default=Path("~/.bookshelf/credentials.json"),
        validation_alias="BOOKSHELF_CREDENTIAL_FILE",
    )
    credential_ttl_seconds: int = Field(
        default=30 * 24 * 3600, validation_alias="BOOKSHELF_CREDENTIAL_TTL",
    )

    # Redis - only used by the redis credential backend
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=5, validation_alias="REDIS_POOL_SIZE")

    # Query cache windows (seconds)
    query_stale_seconds: float = Field(default=300, validation_alias="QUERY_STALE_SECONDS")
    popular_books_stale_seconds: float = Field(
        default=600, validation_alias="POPULAR_BOOKS_STALE_SECONDS",
    )
    recommendations_stale_seconds: float = Field(
        default=600, validation_alias="RECOMMENDATIONS_STALE_SECONDS",
    )
    recommendations_refetch_after_seconds: float = Field(
        default=1800, validation_alias="RECOMMENDATIONS_REFETCH_AFTER_SECONDS",
    )

    # Retry policy for recommendation fetches
    retry_max_retries: int = Field(default=2, ge=0, validation_alias="RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, gt=0, validation_alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=30.0, gt=0, validation_alias="RETRY_MAX_DELAY")

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        """
        Reject inconsistent cache and backend settings.

        The background refetch window must not end before data becomes stale, and the
        redis credential backend is meaningless with Redis disabled.
        """
        if self.recommendations_refetch_after_seconds < self.recommendations_stale_seconds:
            raise ValueError(
                "RECOMMENDATIONS_REFETCH_AFTER_SECONDS must be greater than or equal to "
                "RECOMMENDATIONS_STALE_SECONDS",
            )
        if self.credential_backend == "redis" and not self.redis_enabled:
            raise ValueError(
                "BOOKSHELF_CREDENTIAL_BACKEND=redis requires REDIS_ENABLED=true",
            )
        return self

    @property
    def credential_path(self) -> Path:
        """Credential file path with the user's home directory expanded."""
        return self.credential_file.expanduser()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
