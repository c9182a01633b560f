"""
Notifications for the ETL service.

Provides:
- Completion tokens on a Redis stream, one per applied report
- Operator alerts via Slack webhooks

Usage:
    from src.notifications import get_notifier

    notifier = get_notifier()
    notifier.on_window_failure(error_category="LISTING", error_message="...")
    notifier.on_abandoned(keys=["iot_poc.1700000000000.gz"], max_retries=3)

Configuration (environment variables):
    REDIS_ENABLED: Publish completion tokens (default: false)
    REDIS_ENDPOINT: Redis URL (default: redis://localhost:6379)
    REDIS_STREAM: Stream name (default: poc_id)
    SLACK_ENABLED: Enable Slack alerts (default: true)
    SLACK_WEBHOOK_URL: Slack incoming webhook URL (required for alerts)
"""

from src.notifications.config import (
    RedisSettings,
    SlackSettings,
    NotificationSettings,
    notification_settings,
    get_notification_settings,
)
from src.notifications.stream import (
    RedisStreamPublisher,
    CompletionSink,
    CompletionDrain,
    create_completion_drain,
)
from src.notifications.slack import (
    SlackNotifier,
    create_slack_notifier,
)
from src.notifications.notifier import (
    IngestionNotifier,
    create_notifier,
    get_notifier,
)

__all__ = [
    # Config
    "RedisSettings",
    "SlackSettings",
    "NotificationSettings",
    "notification_settings",
    "get_notification_settings",
    # Stream
    "RedisStreamPublisher",
    "CompletionSink",
    "CompletionDrain",
    "create_completion_drain",
    # Slack
    "SlackNotifier",
    "create_slack_notifier",
    # Main notifier
    "IngestionNotifier",
    "create_notifier",
    "get_notifier",
]
