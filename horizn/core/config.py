"""
Centralized configuration management with Pydantic Settings.
All environment variables are validated and typed.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "horizn Analytics"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = Field(default="development", pattern="^(development|testing|staging|production)$")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 4

    # Database (postgresql+asyncpg in production, sqlite+aiosqlite for tests)
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_echo: bool = False
    slow_query_threshold: float = 2.0  # seconds
    query_cache_ttl: int = 300  # seconds

    # Redis (arq worker)
    redis_url: Optional[RedisDsn] = None

    # Security
    secret_key: str = Field(min_length=32)
    api_key: str = Field(min_length=16)
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24
    ip_salt: str = "change-this-salt-in-production"
    auth_max_attempts: int = 5
    auth_attempt_window: int = 300  # seconds

    # CORS - stored as comma-separated string to avoid JSON parsing issues
    allowed_origins_str: str = Field(default="*", alias="ALLOWED_ORIGINS")

    @property
    def allowed_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins_str.split(",") if origin.strip()]

    # Analytics
    session_timeout: int = 1800  # seconds
    max_events_per_session: int = 1000
    realtime_live_window: int = 300  # seconds a visitor counts as live
    realtime_purge_window: int = 600  # seconds before presence rows are purged
    geo_country_header: Optional[str] = "CF-IPCountry"

    # Tracking
    max_batch_size: int = 50
    max_url_length: int = 512
    max_title_length: int = 255

    # Observability
    sentry_dsn: Optional[str] = None
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
