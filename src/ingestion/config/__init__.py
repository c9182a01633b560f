"""Configuration module for the ETL service."""

from src.ingestion.config.config import (
    Settings,
    FeedSettings,
    StoreSettings,
    PipelineSettings,
    DatabaseSettings,
    SchedulerSettings,
    LoggingSettings,
    get_settings,
    settings,
)

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
