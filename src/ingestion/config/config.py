"""
Configuration management for the proof-of-coverage ETL service.

Loads settings from environment variables and an optional .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before settings are initialized
load_dotenv()


class FeedSettings(BaseSettings):
    """Report feed (object store) configuration."""

    # "s3" for the bucket feed, "local" for a directory with the same layout
    backend: Literal["s3", "local"] = Field(default="s3")
    bucket_name: str = Field(default="iot-verifier")
    # Report files are named <prefix>.<timestamp_millis>.gz
    prefix: str = Field(default="iot_poc")
    region: str = Field(default="us-west-2", validation_alias="AWS_REGION")
    # AWS credentials - use standard AWS env var names
    access_key_id: str | None = Field(default=None, validation_alias="AWS_ACCESS_KEY_ID")
    secret_access_key: str | None = Field(default=None, validation_alias="AWS_SECRET_ACCESS_KEY")
    # For local development with LocalStack or MinIO
    endpoint_url: str | None = Field(default=None)
    local_dir: str = Field(default="data/feed")

    model_config = SettingsConfigDict(
        env_prefix="FEED_",
        populate_by_name=True,
    )


class StoreSettings(BaseSettings):
    """Document/graph store (ArangoDB) configuration."""

    # "memory" keeps everything in-process, for local runs and tests
    backend: Literal["arango", "memory"] = Field(default="arango")
    endpoint: str = Field(default="http://localhost:8529")
    username: str = Field(default="root")
    password: str = Field(default="arangodb")
    database: str = Field(default="iot")
    auth_method: Literal["basic", "jwt"] = Field(default="basic")
    # HTTP connection pool, should cover max_processing_capacity
    pool_size: int = Field(default=32, gt=0)
    # Attempts for an upsert that hits a write conflict
    conflict_retries: int = Field(default=5, gt=0)

    model_config = SettingsConfigDict(env_prefix="STORE_")


class PipelineSettings(BaseSettings):
    """Concurrency bounds and retry budget."""

    # Files open at once
    max_concurrent_files: int = Field(default=16, gt=0)
    # Reports read from a file before waiting for them to be applied
    file_chunk_size: int = Field(default=600, gt=0)
    # Reports being transformed/written at once, across all files
    max_processing_capacity: int = Field(default=32, gt=0)
    # Failed passes allowed before a file is abandoned
    max_retries: int = Field(default=3, ge=0)

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")


class DatabaseSettings(BaseSettings):
    """SQLite run ledger configuration."""

    path: str = Field(default="data/ingestion_runs.db")

    model_config = SettingsConfigDict(env_prefix="DB_")

    @property
    def full_path(self) -> Path:
        """Get the full path to the database file."""
        return Path(self.path)


class SchedulerSettings(BaseSettings):
    """Scheduler configuration."""

    # Tick interval in seconds
    interval_seconds: int = Field(default=10, gt=0)
    # Run a tick immediately on scheduler start
    run_on_start: bool = Field(default=True)
    # Consecutive failed windows tolerated before the driver gives up
    max_window_failures: int = Field(default=5, gt=0)

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    log_dir: str = Field(default="logs")
    log_file: str = Field(default="poc_etl.log")
    rotation: str = Field(default="50 MB")
    retention: str = Field(default="7 days")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    """Main settings aggregating all configuration."""

    feed: FeedSettings = Field(default_factory=FeedSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Environment name (development, staging, production)
    environment: str = Field(default="development")

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()


# Export for easy access
settings = get_settings()

__all__ = [
    "Settings",
    "FeedSettings",
    "StoreSettings",
    "PipelineSettings",
    "DatabaseSettings",
    "SchedulerSettings",
    "LoggingSettings",
    "get_settings",
    "settings",
]
