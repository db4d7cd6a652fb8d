"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # JWT verification (tokens are issued by the platform identity provider)
    jwt_secret_key: str = Field(..., description="Secret key for JWT token verification")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # Storage
    store_backend: str = Field(default="postgres", description="'postgres' or 'memory'")
    database_url: str = Field(default="", description="PostgreSQL database URL")
    database_ssl: str | None = Field(default=None, description="asyncpg ssl mode, e.g. 'require'")
    run_migrations: bool = Field(default=True, description="Apply pending migrations on startup")

    # Matchmaking
    queue_entry_ttl_minutes: int = Field(default=30, ge=1, description="Queue entry lifetime")
    requeue_delay_seconds: float = Field(
        default=2.0, ge=0, description="Grace delay before re-queueing an abandoned partner"
    )
    queue_sweep_interval: int = Field(
        default=60, ge=1, description="Seconds between expired-entry sweeps"
    )
    transcript_limit: int = Field(default=200, ge=1, description="Messages kept per room")

    # Events
    event_channel: str = Field(
        default="random_connection_events", description="PostgreSQL NOTIFY channel for events"
    )

    # Server
    frontend_url: str = Field(default="http://localhost:3000", description="Frontend URL for CORS")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ("postgres", "memory"):
            raise ValueError("store_backend must be 'postgres' or 'memory'")
        return v_lower

    @property
    def uses_postgres(self) -> bool:
        return self.store_backend == "postgres"

    @property
    def cors_origins(self) -> list[str]:
        return [self.frontend_url]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
