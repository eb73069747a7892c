"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Store backend: "memory" (default), "sql" or "redis"
    store_backend: Literal["memory", "sql", "redis"] = "memory"

    # Database (store_backend="sql")
    database_url: str = "sqlite+aiosqlite:///./proximity.db"

    # Redis (store_backend="redis")
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "proximity"

    # API Security
    tracker_api_key: str = ""  # Required for /api/* endpoints when set
    api_key_header_name: str = "X-API-KEY"

    # Rate Limiting (sender + receiver each poll every 2s)
    rate_limit_requests_per_minute: int = 120
    rate_limit_burst: int = 20

    # Protocol constants
    proximity_threshold_km: float = 1.0
    submit_interval_seconds: float = 2.0
    poll_interval_seconds: float = 2.0
    stale_after_seconds: float = 10.0
    purge_after_seconds: float = 60.0
    cleanup_interval_seconds: float = 30.0
    geolocation_timeout_seconds: float = 5.0
    rsa_key_size: int = 2048

    # Agents
    api_base_url: str = "http://localhost:10000"
    client_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    # Server
    port: int = 10000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
