"""
Kizeo Sync - Configuration

Environment-driven settings validated by pydantic-settings on construction.
DATABASE_URL and KIZEO_API_TOKEN are required; everything else has a
production default.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

DEFAULT_API_URL = "https://forms.kizeo.com/rest/v3"
DEFAULT_BACKUP_DIR = "storage/backups/kizeo_lists"


class SyncConfig(BaseSettings):
    """
    Settings for the ingestion and list-sync jobs.

    Loaded from environment variables (case-insensitive).
    """

    # Core settings (REQUIRED)
    database_url: str = Field(
        ...,
        description="PostgreSQL connection string",
    )
    kizeo_api_token: str = Field(
        ...,
        description="Kizeo Forms API token, sent verbatim in Authorization",
    )

    env: str = Field(
        default="dev",
        description="Environment: dev, staging, prod",
    )

    # Upstream API
    kizeo_api_url: str = Field(default=DEFAULT_API_URL)
    kizeo_timeout_metadata: float = Field(default=30.0, gt=0)
    kizeo_timeout_media: float = Field(default=60.0, gt=0)
    kizeo_timeout_report: float = Field(default=90.0, gt=0)

    # Ingestion
    fetch_limit: int = Field(default=10, ge=1, le=50)
    retry_attempts: int = Field(default=3, ge=1)

    # Job queue maintenance
    stuck_job_minutes: int = Field(default=60, ge=1)
    purge_done_days: int = Field(default=14, ge=1)
    purge_failed_days: int = Field(default=30, ge=1)

    # List backups
    backup_dir: Path = Field(default=Path(DEFAULT_BACKUP_DIR))
    backup_max_age_days: int = Field(default=7, ge=1)
    backup_max_per_agency: int = Field(default=2, ge=1)

    # Scheduler
    fetch_interval_minutes: int = Field(default=15, ge=1)
    list_sync_cron_hour: int = Field(default=2, ge=0, le=23)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Ensure env is one of the allowed values."""
        allowed = ("dev", "staging", "prod")
        v_lower = v.lower().strip()
        if v_lower not in allowed:
            raise ValueError(f"env must be one of {allowed}, got: {v}")
        return v_lower

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure DATABASE_URL looks like a Postgres connection string."""
        v = v.strip()
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgres://", "postgresql://")):
            raise ValueError("DATABASE_URL must start with postgres:// or postgresql://")
        return v

    @field_validator("kizeo_api_token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("KIZEO_API_TOKEN is required")
        return v

    @field_validator("kizeo_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        v_upper = v.upper().strip()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got: {v}")
        return v_upper

    class Config:
        extra = "ignore"
        case_sensitive = False


def load_config(**overrides) -> SyncConfig:
    """
    Load and validate configuration from environment variables.

    Keyword overrides take precedence over the environment (used by tests
    and by CLI options).

    Raises:
        ConfigError: If required variables are missing or invalid.
    """
    try:
        config = SyncConfig(**overrides)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ConfigError(f"Invalid configuration ({fields}): {e.error_count()} error(s)") from e

    logger.info(
        f"Config loaded: env={config.env}, api={config.kizeo_api_url}, "
        f"fetch_limit={config.fetch_limit}, backup_dir={config.backup_dir}"
    )

    return config
