"""
Main notifier for operator alerts.

Provides a unified interface for the events the driver reports.
"""

from datetime import datetime

from src.utils import logger
from src.notifications.slack import SlackNotifier, create_slack_notifier


class IngestionNotifier:
    """
    Unified notifier for ingestion events.

    Sends Slack alerts for failed windows and abandoned files.
    """

    def __init__(
        self,
        slack: SlackNotifier | None = None,
    ):
        """
        Initialize the notifier.

        Args:
            slack: Slack notifier (created if not provided)
        """
        self.slack = slack or create_slack_notifier()

        logger.info("IngestionNotifier initialized")

    def on_window_failure(
        self,
        error_category: str,
        error_message: str,
        window_start: datetime | None = None,
        record_id: int | None = None,
    ) -> None:
        """
        Handle a window that could not be processed.

        Args:
            error_category: Category of the error
            error_message: Detailed error message
            window_start: Start of the window, which will be retried
            record_id: Run ledger record ID
        """
        logger.error(f"Recording window failure: [{error_category}] {error_message}")

        self.slack.notify_failure(
            error_category=error_category,
            error_message=error_message,
            window_start=window_start,
            record_id=record_id,
        )

    def on_abandoned(self, keys: list[str], max_retries: int) -> None:
        """Handle files that ran out of retries."""
        if not keys:
            return

        logger.warning(f"Recording {len(keys)} abandoned files: {', '.join(keys)}")
        self.slack.notify_abandoned(keys=keys, max_retries=max_retries)


def create_notifier() -> IngestionNotifier:
    """Create a new notifier."""
    return IngestionNotifier()


# Singleton instance
_notifier: IngestionNotifier | None = None


def get_notifier() -> IngestionNotifier:
    """Get the global notifier instance."""
    global _notifier
    if _notifier is None:
        _notifier = create_notifier()
    return _notifier


__all__ = [
    "IngestionNotifier",
    "create_notifier",
    "get_notifier",
]
