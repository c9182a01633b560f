"""
Slack alerts for operators.

Window failures and abandoned files are posted to a channel via webhook.
"""

from datetime import datetime, timezone

import httpx

from src.utils import logger
from src.notifications.config import notification_settings


class SlackNotifier:
    """
    Sends alerts to Slack via incoming webhooks.

    Publishes formatted messages for:
    - Windows that could not be processed (listing or completion errors)
    - Files abandoned after exhausting their retries
    """

    def __init__(
        self,
        webhook_url: str | None = None,
    ):
        """
        Initialize Slack notifier.

        Args:
            webhook_url: Slack incoming webhook URL
        """
        self.webhook_url = webhook_url or notification_settings.slack.webhook_url
        self.enabled = notification_settings.slack.enabled and bool(self.webhook_url)

        if self.enabled:
            logger.info("Slack notifier initialized")
        elif not self.webhook_url:
            logger.warning("Slack webhook URL not configured, alerts disabled")
        else:
            logger.info("Slack notifier disabled")

    def _send(self, payload: dict) -> bool:
        """
        Send a message to Slack.

        Returns:
            True if successful, False otherwise
        """
        if not self.enabled or not self.webhook_url:
            logger.debug("Slack disabled or not configured, skipping alert")
            return False

        try:
            with httpx.Client(timeout=10) as client:
                response = client.post(self.webhook_url, json=payload)

                if response.status_code != 200:
                    logger.error(f"Slack webhook failed: {response.status_code} - {response.text}")
                    return False

                logger.info("Slack alert sent successfully")
                return True

        except httpx.HTTPError as e:
            logger.error(f"Failed to send Slack alert: {e}")
            return False

    def _message(self, title: str, fields: dict[str, str], body: str, timestamp: datetime) -> dict:
        return {
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": title, "emoji": True},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Environment:*\n{notification_settings.environment}"},
                        {"type": "mrkdwn", "text": f"*Service:*\n{notification_settings.service_name}"},
                    ] + [
                        {"type": "mrkdwn", "text": f"*{name}:*\n{value}"}
                        for name, value in fields.items()
                    ],
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"```{body}```"},
                },
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"⏰ {timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}"}
                    ],
                },
            ]
        }

    def notify_failure(
        self,
        error_category: str,
        error_message: str,
        window_start: datetime | None = None,
        record_id: int | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Alert that a window failed and will be retried unchanged.

        Args:
            error_category: Category of the error
            error_message: Detailed error message
            window_start: Start of the failed window
            record_id: Run ledger record ID (if available)
            timestamp: When the failure occurred
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        fields = {
            "Error Category": f"`{error_category}`",
            "Window Start": window_start.isoformat() if window_start else "N/A",
            "Run ID": str(record_id or "N/A"),
        }
        return self._send(self._message("🚨 Ingestion Window Failed", fields, error_message, timestamp))

    def notify_abandoned(
        self,
        keys: list[str],
        max_retries: int,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Alert that files were abandoned after exhausting their retries.

        Args:
            keys: Abandoned file keys
            max_retries: Retry budget they exceeded
            timestamp: When they were abandoned
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        fields = {
            "Files": str(len(keys)),
            "Retry Budget": str(max_retries),
        }
        return self._send(self._message("⚠️ Report Files Abandoned", fields, "\n".join(keys), timestamp))


def create_slack_notifier() -> SlackNotifier:
    """Create a new Slack notifier."""
    return SlackNotifier()


__all__ = ["SlackNotifier", "create_slack_notifier"]
