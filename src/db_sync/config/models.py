"""Pydantic models for db-sync configuration."""

from pydantic import BaseModel, Field


class DatabaseProfile(BaseModel):
    """Database connection profile from db-sync.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    environment: str = "development"  # "production"/"prod" require confirmation


class SyncSettings(BaseModel):
    """``[sync]`` section."""

    batch_size: int = Field(default=1000, gt=0)
    max_concurrent_jobs: int = Field(default=3, gt=0)
    max_tables_per_job: int = Field(default=50, gt=0)


class SchedulerSettings(BaseModel):
    """``[scheduler]`` section."""

    scan_interval_seconds: float = Field(default=60.0, gt=0)
    default_timezone: str = "UTC"


class DatabaseConfig(BaseModel):
    """Complete configuration from db-sync.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
