"""Configuration management for the clinic calendar."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

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

    # Time zones
    default_time_zone: str = Field(
        default="America/Chicago",
        description="Zone used when a clinician or viewer zone cannot be resolved",
    )

    # Calendar grid
    slot_minutes: int = Field(default=30, ge=5, le=240, description="Grid slot length in minutes")
    day_start_hour: int = Field(default=7, ge=0, le=23, description="First hour shown in the week grid")
    day_end_hour: int = Field(default=19, ge=1, le=24, description="Hour at which the week grid ends")
    week_starts_on: Literal["monday", "sunday"] = Field(default="sunday")

    # Booking policy
    min_notice_days: int = Field(
        default=1,
        ge=0,
        description="Minimum number of days between today and a booked appointment",
    )
    max_advance_days: int = Field(
        default=30,
        ge=0,
        description="Maximum number of days ahead an appointment may be booked",
    )

    # Persistence collaborator
    database_url: str = Field(
        default="sqlite+aiosqlite:///./clinic_calendar.db",
        description="SQLAlchemy async DSN for the calendar store",
    )
    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout applied to each persistence fetch",
    )

    # Diagnostics
    diagnostics_dir: Optional[Path] = Field(
        default=None,
        description="Directory for JSON Lines diagnostics (disabled when unset)",
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins",
    )

    # Debug
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode (exposes error details in responses)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def has_diagnostics_sink(self) -> bool:
        """Check if diagnostics should be persisted to disk."""
        return self.diagnostics_dir is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
