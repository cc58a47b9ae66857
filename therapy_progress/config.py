"""Configuration management for the therapy progress engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/therapy_progress.db",
        description="SQLAlchemy async DSN for the tracking store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Progress reports
    report_session_limit: int = Field(
        default=50,
        ge=1,
        description="Most recent sessions considered when building a report",
    )
    trend_delta_threshold: float = Field(
        default=5.0,
        ge=0,
        description="Percentage-point change between report halves that counts as a trend",
    )
    not_started_threshold: float = Field(
        default=10.0,
        ge=0,
        le=100,
        description="Goals below this progress percentage are reported as not started",
    )

    # Mastery
    mastery_requires_streak: bool = Field(
        default=False,
        description="Require consecutive_days qualifying updates before a goal is mastered",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
