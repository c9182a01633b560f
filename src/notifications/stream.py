"""
Completion tokens on a Redis stream.

Every report that has been fully applied produces its poc_id as a token.
Workers hand tokens to a bounded in-process sink without blocking; a single
drain thread publishes them with XADD. Publishing is fire-and-forget: a
failure is logged and never reaches the pipeline.
"""

import queue
import threading

import redis

from src.utils import logger
from src.utils.exceptions import MissingConfigError, NotificationError
from src.notifications.config import notification_settings


_STOP = object()


class RedisStreamPublisher:
    """Append tokens to a Redis stream through a connection pool."""

    def __init__(
        self,
        endpoint: str | None = None,
        stream: str | None = None,
        pool_size: int | None = None,
        client: redis.Redis | None = None,
    ):
        """
        Initialize the publisher.

        Args:
            endpoint: Redis URL
            stream: Stream name
            pool_size: Maximum pooled connections
            client: Pre-built Redis client
        """
        cfg = notification_settings.redis
        self.endpoint = endpoint or cfg.endpoint
        self.stream = stream or cfg.stream
        self.pool_size = pool_size or cfg.pool_size

        if client is None:
            if not self.endpoint:
                raise MissingConfigError("REDIS_ENDPOINT")
            try:
                pool = redis.ConnectionPool.from_url(self.endpoint, max_connections=self.pool_size)
            except ValueError as e:
                raise NotificationError(f"Invalid Redis endpoint {self.endpoint}: {e}")
            client = redis.Redis(connection_pool=pool)
        self._client = client

        logger.info(f"Redis stream publisher initialized for stream: {self.stream}")

    def publish(self, token: str) -> bool:
        """
        Append ``{token: "done"}`` to the stream.

        Returns:
            True if the entry was added, False otherwise
        """
        try:
            self._client.xadd(self.stream, {token: "done"})
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to publish {token} to stream {self.stream}: {e}")
            return False

    def close(self) -> None:
        self._client.close()


class CompletionSink:
    """Bounded, non-blocking hand-off of completion tokens."""

    def __init__(self, maxsize: int | None = None):
        self.maxsize = maxsize or notification_settings.redis.sink_size
        self._queue: queue.Queue = queue.Queue(maxsize=self.maxsize)
        self.dropped = 0

    def put(self, token: str) -> bool:
        """
        Queue a token without blocking.

        Returns:
            False if the sink was full and the token was dropped
        """
        try:
            self._queue.put_nowait(token)
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning(f"Completion sink full, dropped token {token}")
            return False

    def get(self):
        return self._queue.get()

    def close(self) -> None:
        """Queue the stop marker behind every pending token."""
        self._queue.put(_STOP)

    def pending(self) -> int:
        return self._queue.qsize()


class CompletionDrain(threading.Thread):
    """Thread that publishes every token handed to the sink."""

    def __init__(self, sink: CompletionSink, publisher: RedisStreamPublisher):
        super().__init__(name="completion-drain", daemon=True)
        self.sink = sink
        self.publisher = publisher
        self.published = 0

    def run(self) -> None:
        while True:
            token = self.sink.get()
            if token is _STOP:
                break
            if self.publisher.publish(token):
                self.published += 1
        logger.debug(f"Completion drain stopped after {self.published} tokens")

    def stop(self, timeout: float | None = None) -> None:
        """Publish what is already queued, then stop."""
        self.sink.close()
        self.join(timeout)
        if self.is_alive():
            logger.warning(f"Completion drain did not finish within {timeout}s")


def create_completion_drain() -> tuple[CompletionSink, CompletionDrain]:
    """Create a sink and its drain thread (not started) from settings."""
    sink = CompletionSink()
    return sink, CompletionDrain(sink, RedisStreamPublisher())


__all__ = [
    "RedisStreamPublisher",
    "CompletionSink",
    "CompletionDrain",
    "create_completion_drain",
]
