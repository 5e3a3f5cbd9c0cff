"""
Configuration and settings for the climb log backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api/v1")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:8081"])

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Queue (Redis) for outgoing mail jobs
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="climblog:mail")

    # Tokens
    jwt_secret: str = Field(default="dev-climblog-access-secret")
    jwt_refresh_secret: str = Field(default="dev-climblog-refresh-secret")
    jwt_issuer: str = Field(default="climblog.api")
    access_token_ttl_minutes: int = Field(default=60)
    refresh_token_ttl_days: int = Field(default=7)
    password_reset_ttl_minutes: int = Field(default=60)

    # Mail delivery
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    mail_from: str = Field(default='"Support Team" <support@example.com>')
    frontend_url: str = Field(default="http://localhost:8081")

    # Size of the recent likes/comments lists cached on each climb
    recent_interactions_limit: int = Field(default=5, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
