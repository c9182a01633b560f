"""
Tests for completion tokens and operator alerts.
"""

from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest
import redis

from src.utils.exceptions import MissingConfigError, NotificationError
from src.notifications.notifier import IngestionNotifier
from src.notifications.slack import SlackNotifier
from src.notifications.stream import (
    CompletionDrain,
    CompletionSink,
    RedisStreamPublisher,
)
from tests.pipeline.factories import T0


def test_sink_drops_when_full():
    sink = CompletionSink(maxsize=2)

    assert sink.put("a") and sink.put("b")
    assert sink.put("c") is False
    assert sink.dropped == 1
    assert sink.pending() == 2


def test_publisher_adds_stream_entry():
    client = Mock()
    publisher = RedisStreamPublisher(stream="poc_id", client=client)

    assert publisher.publish("cG9jLTE=") is True
    client.xadd.assert_called_once_with("poc_id", {"cG9jLTE=": "done"})


def test_publisher_swallows_redis_errors():
    client = Mock()
    client.xadd.side_effect = redis.ConnectionError("refused")
    publisher = RedisStreamPublisher(stream="poc_id", client=client)

    assert publisher.publish("token") is False


def test_publisher_rejects_bad_endpoint():
    with pytest.raises(NotificationError):
        RedisStreamPublisher(endpoint="http://localhost:6379", stream="poc_id")


def test_publisher_requires_endpoint():
    with patch("src.notifications.stream.notification_settings") as cfg:
        cfg.redis.endpoint = ""
        cfg.redis.stream = "poc_id"
        cfg.redis.pool_size = 4
        with pytest.raises(MissingConfigError):
            RedisStreamPublisher()


def test_drain_publishes_queued_tokens_before_stopping():
    client = Mock()
    sink = CompletionSink(maxsize=10)
    drain = CompletionDrain(sink, RedisStreamPublisher(stream="poc_id", client=client))
    for token in ("a", "b", "c"):
        sink.put(token)

    drain.start()
    drain.stop(timeout=5)

    assert not drain.is_alive()
    assert drain.published == 3
    assert [c.args[1] for c in client.xadd.call_args_list] == [{"a": "done"}, {"b": "done"}, {"c": "done"}]


def test_drain_keeps_going_after_publish_failure():
    client = Mock()
    client.xadd.side_effect = [redis.TimeoutError("slow"), "1-0"]
    sink = CompletionSink(maxsize=10)
    drain = CompletionDrain(sink, RedisStreamPublisher(stream="poc_id", client=client))
    sink.put("a")
    sink.put("b")

    drain.start()
    drain.stop(timeout=5)

    assert drain.published == 1


def test_slack_without_webhook_is_disabled():
    with patch("src.notifications.slack.notification_settings") as cfg:
        cfg.slack.webhook_url = None
        cfg.slack.enabled = True
        notifier = SlackNotifier()

    assert notifier.enabled is False
    assert notifier.notify_failure("LISTING", "down") is False


def _client_returning(status_code: int) -> MagicMock:
    client_cls = MagicMock()
    client = client_cls.return_value.__enter__.return_value
    client.post.return_value = Mock(status_code=status_code, text="")
    return client_cls


def test_slack_posts_failure_alert():
    client_cls = _client_returning(200)
    notifier = SlackNotifier(webhook_url="https://hooks.slack.test/x")
    notifier.enabled = True

    with patch("src.notifications.slack.httpx.Client", client_cls):
        sent = notifier.notify_failure("LISTING", "bucket unavailable", window_start=T0, record_id=7)

    assert sent is True
    payload = client_cls.return_value.__enter__.return_value.post.call_args.kwargs["json"]
    text = str(payload)
    assert "LISTING" in text
    assert "bucket unavailable" in text
    assert T0.isoformat() in text


def test_slack_reports_http_failures():
    notifier = SlackNotifier(webhook_url="https://hooks.slack.test/x")
    notifier.enabled = True

    with patch("src.notifications.slack.httpx.Client", _client_returning(500)):
        assert notifier.notify_abandoned(["iot_poc.1.gz"], max_retries=3) is False

    failing = MagicMock()
    failing.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("refused")
    with patch("src.notifications.slack.httpx.Client", failing):
        assert notifier.notify_abandoned(["iot_poc.1.gz"], max_retries=3) is False


def test_notifier_skips_empty_abandoned_list():
    slack = Mock()
    notifier = IngestionNotifier(slack=slack)

    notifier.on_abandoned([], max_retries=3)
    slack.notify_abandoned.assert_not_called()

    notifier.on_abandoned(["iot_poc.1.gz"], max_retries=3)
    slack.notify_abandoned.assert_called_once_with(keys=["iot_poc.1.gz"], max_retries=3)


def test_notifier_forwards_window_failure():
    slack = Mock()
    notifier = IngestionNotifier(slack=slack)

    notifier.on_window_failure("LISTING", "down", window_start=T0, record_id=3)

    slack.notify_failure.assert_called_once_with(
        error_category="LISTING",
        error_message="down",
        window_start=T0,
        record_id=3,
    )
