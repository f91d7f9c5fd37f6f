"""
Application settings for the identity reconciliation service.

- Defaults are intended for development use (local SQLite file).
- For testing, construct the store with an explicit URL.
- For production, set environment variables to override fields.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Identity reconciliation service configuration."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./identity.db",
        description="SQLAlchemy async URL (postgresql+asyncpg:// or sqlite+aiosqlite://)",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")
    db_pool_size: int = Field(default=5, description="Connection pool size")
    db_pool_max_overflow: int = Field(
        default=10, description="Connections allowed above the pool size"
    )
    db_pool_timeout: float = Field(
        default=30.0, description="Seconds to wait for a pooled connection"
    )
    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a SQLite connection waits for the write lock",
    )
    create_schema_on_startup: bool = Field(
        default=True,
        description="Create the contacts table on startup if it does not exist",
    )

    # Resolution Configuration
    resolve_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per resolve when the store reports a transient conflict",
    )
    resolve_retry_base_delay: float = Field(
        default=0.05,
        description="Initial backoff between resolve attempts in seconds",
    )
    resolve_retry_max_delay: float = Field(
        default=1.0,
        description="Maximum backoff between resolve attempts in seconds",
    )
    max_link_hops: int = Field(
        default=32,
        ge=1,
        description="Maximum links followed when resolving a secondary to its primary",
    )
    resolve_timeout: float = Field(
        default=10.0,
        description="Timeout for a single /identify request in seconds",
    )

    log_level: str = Field(default="INFO", description="Root log level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
