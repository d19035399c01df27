"""
Centralized Configuration System
Environment-aware settings for the ingress API, queue and consumer.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Literal, Optional

from sqlalchemy.engine import URL


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # QUEUE & REDRIVE POLICY
    # ============================================
    queue_backend: Literal["database", "memory"] = "database"  # memory loses queued webhooks on restart
    queue_name: str = "webhook"
    visibility_timeout_seconds: float = Field(default=300.0, gt=0)
    max_receive_count: int = Field(default=5, ge=1)
    queue_poll_interval_seconds: float = Field(default=0.2, gt=0)  # Long-poll re-check for the database queue

    # ============================================
    # CONSUMER WORKER
    # ============================================
    receive_batch_size: int = Field(default=10, ge=1, le=10)
    receive_wait_seconds: float = Field(default=1.0, ge=0)
    worker_max_concurrent: int = Field(default=10, ge=1)
    worker_poll_interval_seconds: float = 1.0
    worker_shutdown_timeout_seconds: float = 30.0

    # ============================================
    # INGRESS
    # ============================================
    max_payload_bytes: int = 256 * 1024  # SQS message size limit

    # ============================================
    # DATABASE SINK
    # ============================================
    database_driver: str = "postgresql+asyncpg"
    database_user: str = "webhook"
    database_password: str = ""
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "webhooks"
    database_url: Optional[str] = None  # Overrides the individual parameters
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout_seconds: float = 10.0

    # ============================================
    # OBSERVABILITY
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "test", "staging", "production"] = "development"

    def sqlalchemy_url(self) -> URL | str:
        """
        Build the SQLAlchemy connection URL for the database sink.

        DATABASE_URL wins when set; otherwise the URL is assembled from the
        {user, host, password, database, port} parameters.
        """
        if self.database_url:
            return self.database_url
        return URL.create(
            drivername=self.database_driver,
            username=self.database_user,
            password=self.database_password or None,
            host=self.database_host,
            port=self.database_port,
            database=self.database_name,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
