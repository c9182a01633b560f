"""
Pipeline driver.

Uses APScheduler to process an open-ended window at a fixed interval,
advancing the watermark after every successful window. One-shot windows
(history, rehydrate) go through the same path without the scheduler.
"""

import signal
import threading
from datetime import datetime, timezone

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.utils import logger
from src.utils.exceptions import DatabaseError, WindowError
from src.utils.logger import setup_logger
from src.ingestion.config import settings
from src.ingestion.db import RunRecord, RunRepository, RunStatus, create_repository
from src.ingestion.jobs.ingestion_job import (
    IngestionJob,
    WindowResult,
    categorize_error,
    create_job,
)
from src.notifications import (
    CompletionDrain,
    IngestionNotifier,
    create_completion_drain,
    get_notifier,
    notification_settings,
)


JOB_ID = "poc_ingestion"


class IngestionScheduler:
    """
    Drive the ingestion job over successive windows.

    Features:
    - Watermark advanced only after a window succeeds
    - Non-overlapping ticks
    - Run ledger record and alerts for every window
    - Gives up after too many consecutive failed windows
    - Graceful shutdown on SIGINT/SIGTERM
    """

    def __init__(
        self,
        job: IngestionJob,
        repository: RunRepository | None = None,
        notifier: IngestionNotifier | None = None,
        drain: CompletionDrain | None = None,
        after: datetime | None = None,
        interval_seconds: int | None = None,
        run_on_start: bool | None = None,
        max_window_failures: int | None = None,
    ):
        """
        Initialize the driver.

        Args:
            job: Window processor
            repository: Run ledger (runs are not recorded if None)
            notifier: Operator alerts (created if not provided)
            drain: Completion token drain thread, started with the driver
            after: Watermark of the first window (default: now)
            interval_seconds: Tick interval in seconds (default from settings)
            run_on_start: Whether to tick immediately on start
            max_window_failures: Consecutive failed windows before giving up
        """
        self.job = job
        self.repository = repository
        self.notifier = notifier or get_notifier()
        self.drain = drain
        self.after = after or datetime.now(timezone.utc)

        cfg = settings.scheduler
        self.interval_seconds = interval_seconds or cfg.interval_seconds
        self.run_on_start = run_on_start if run_on_start is not None else cfg.run_on_start
        self.max_window_failures = max_window_failures or cfg.max_window_failures

        self.consecutive_failures = 0
        self._tick_lock = threading.Lock()
        self._fatal: WindowError | None = None
        self._stopped = False

        self._scheduler = BlockingScheduler()
        self._setup_listeners()

        logger.info(
            f"IngestionScheduler initialized with {self.interval_seconds}s interval, "
            f"starting after {self.after.isoformat()}"
        )

    def _setup_listeners(self) -> None:
        """Setup job event listeners."""
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum: int, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.job.request_shutdown()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug(f"Job {event.job_id} executed at {datetime.now(timezone.utc)}")

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(f"Job {event.job_id} failed with exception: {event.exception}")
        logger.error(event.traceback)

    def _create_record(self, after: datetime, before: datetime | None) -> RunRecord | None:
        if self.repository is None:
            return None
        try:
            return self.repository.create_record(window_start=after, window_end=before)
        except DatabaseError as e:
            logger.error(f"Failed to create run record: {e}")
            return None

    def _update_record(self, record: RunRecord | None, **fields) -> None:
        if self.repository is None or record is None:
            return
        try:
            self.repository.update_record(record_id=record.id, **fields)
        except DatabaseError as e:
            logger.error(f"Failed to update run record {record.id}: {e}")

    def run_window(self, after: datetime, before: datetime | None = None) -> WindowResult:
        """
        Process one window and record it.

        Raises:
            WindowError: If the window could not be processed
        """
        record = self._create_record(after, before)

        try:
            result = self.job.process(after, before)
        except WindowError as e:
            category, message = categorize_error(e)
            logger.error(f"Window after {after.isoformat()} FAILED [{category}]: {message}")
            self._update_record(
                record,
                status=RunStatus.FAILED,
                error_message=f"[{category}] {message}",
            )
            self.notifier.on_window_failure(
                error_category=category,
                error_message=message,
                window_start=after,
                record_id=record.id if record else None,
            )
            raise

        unresolved = len(result.failed) + len(result.interrupted) + len(result.abandoned)
        self._update_record(
            record,
            status=RunStatus.PARTIAL if unresolved else RunStatus.SUCCESS,
            next_watermark=result.next_watermark,
            files_total=result.files_total,
            files_failed=unresolved,
        )
        self.notifier.on_abandoned(
            keys=[o.file.key for o in result.abandoned],
            max_retries=self.job.max_retries,
        )
        return result

    def tick(self) -> WindowResult | None:
        """
        Process ``[after, now)`` and advance the watermark on success.

        Returns:
            WindowResult, or None if the tick was skipped or failed

        Raises:
            WindowError: After ``max_window_failures`` consecutive failures
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous tick still running, skipping")
            return None

        try:
            if self.job.shutting_down:
                return None

            try:
                result = self.run_window(self.after)
            except WindowError:
                self.consecutive_failures += 1
                logger.warning(
                    f"Watermark kept at {self.after.isoformat()} "
                    f"({self.consecutive_failures}/{self.max_window_failures} consecutive failures)"
                )
                if self.consecutive_failures >= self.max_window_failures:
                    raise
                return None

            self.consecutive_failures = 0
            self.after = result.next_watermark
            return result
        finally:
            self._tick_lock.release()

    def _scheduled_tick(self) -> None:
        try:
            self.tick()
        except WindowError as e:
            logger.critical(f"Giving up after {self.consecutive_failures} failed windows: {e}")
            self._fatal = e
            self.job.request_shutdown()
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)

    def start(self) -> None:
        """
        Start the driver and block until it is stopped.

        Raises:
            WindowError: If the driver gave up on consecutive failed windows
        """
        logger.info("=" * 60)
        logger.info("STARTING INGESTION DRIVER")
        logger.info(f"Interval: {self.interval_seconds} seconds")
        logger.info(f"Run on start: {self.run_on_start}")
        logger.info(f"Watermark: {self.after.isoformat()}")
        logger.info("=" * 60)

        self._setup_signal_handlers()
        if self.drain is not None:
            self.drain.start()

        self._scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Proof-of-coverage ingestion",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        if self.run_on_start:
            logger.info("Running initial window...")
            self._scheduled_tick()

        if self._fatal is None and not self.job.shutting_down:
            logger.info("Scheduler started, waiting for next scheduled run...")
            self._scheduler.start()

        self.stop()
        if self._fatal is not None:
            raise self._fatal

    def run_once(self, after: datetime, before: datetime | None = None) -> WindowResult:
        """Process a single window with the completion drain running."""
        if self.drain is not None:
            self.drain.start()
        try:
            return self.run_window(after, before)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop admitting work, wait for the in-flight tick and flush tokens."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping driver...")
        self.job.request_shutdown()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        # Wait for an in-flight tick to finish its writes
        with self._tick_lock:
            pass

        if self.drain is not None and self.drain.is_alive():
            self.drain.stop(timeout=30)
        logger.info(f"Driver stopped at watermark {self.after.isoformat()}")


def create_scheduler(
    after: datetime | None = None,
    interval_seconds: int | None = None,
    run_on_start: bool | None = None,
) -> IngestionScheduler:
    """
    Wire a driver from settings.

    The first watermark is ``after``, else the latest one in the run ledger,
    else now.
    """
    sink, drain = None, None
    if notification_settings.redis.enabled:
        sink, drain = create_completion_drain()

    repository = create_repository()
    after = after or repository.get_latest_watermark() or datetime.now(timezone.utc)

    return IngestionScheduler(
        job=create_job(sink=sink),
        repository=repository,
        drain=drain,
        after=after,
        interval_seconds=interval_seconds,
        run_on_start=run_on_start,
    )


def start_scheduler(after: datetime | None = None) -> None:
    """
    Convenience function to create and start a driver.

    Uses settings from environment variables.
    """
    setup_logger(
        log_level=settings.logging.level,
        log_dir=settings.logging.log_dir,
        log_file=settings.logging.log_file,
        rotation=settings.logging.rotation,
        retention=settings.logging.retention,
    )

    scheduler = create_scheduler(after=after)
    scheduler.start()


__all__ = [
    "IngestionScheduler",
    "create_scheduler",
    "start_scheduler",
]
