"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Queue store
    store_backend: str = "redis"  # redis or memory
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_socket_connect_timeout: float = 5.0

    # Worker Configuration
    worker_id: str | None = None
    worker_queues: list[str] = ["analyze", "fix", "master", "codec-preview"]
    worker_concurrency: int = 1
    worker_pop_timeout_seconds: float = 1.0
    worker_store_backoff_seconds: float = 1.0
    worker_lease_seconds: int = 0  # 0 disables the visibility timeout
    worker_handlers: str | None = None  # "module:attribute" of a HandlerRegistry

    # Reaper Configuration
    reaper_interval_seconds: int = 10

    # Retry policy
    default_max_retries: int = 3

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "budi-jobs"
    tracing_enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
