"""
Configuration for notifications (Redis completion stream, Slack alerts).
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis stream that receives a token for every applied report."""

    # Completion tokens are only published when enabled
    enabled: bool = Field(default=False)
    endpoint: str = Field(default="redis://localhost:6379")
    pool_size: int = Field(default=16, gt=0)
    # Stream name; each entry is {<poc_id>: "done"}
    stream: str = Field(default="poc_id")
    # Tokens buffered before new ones are dropped
    sink_size: int = Field(default=10_000, gt=0)

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class SlackSettings(BaseSettings):
    """Slack configuration for operator alerts."""

    # Enable/disable Slack notifications
    enabled: bool = Field(default=True)
    # Slack incoming webhook URL
    webhook_url: str | None = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="SLACK_")


class NotificationSettings(BaseSettings):
    """Main notification settings."""

    redis: RedisSettings = Field(default_factory=RedisSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)

    # Environment name (included in alerts)
    environment: str = Field(default="development")
    # Service name
    service_name: str = Field(default="iot-poc-etl")

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")


# Singleton instance
_notification_settings: NotificationSettings | None = None


def get_notification_settings() -> NotificationSettings:
    """Get cached notification settings."""
    global _notification_settings
    if _notification_settings is None:
        _notification_settings = NotificationSettings()
    return _notification_settings


notification_settings = get_notification_settings()

__all__ = [
    "RedisSettings",
    "SlackSettings",
    "NotificationSettings",
    "get_notification_settings",
    "notification_settings",
]
