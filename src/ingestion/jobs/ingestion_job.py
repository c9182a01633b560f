"""
Ingestion job that applies the report files of one time window.

This is the main pipeline that:
1. Lists the report files in the window and drops those already done
2. Opens a bounded number of files at once
3. Decodes, transforms and writes each file's reports in bounded chunks
4. Marks a file done once all its reports are applied, or counts a retry
5. Computes the watermark the next window should start from

A bad report never fails its file and a failed file never fails the window.
Only a listing error or a lost completion marker aborts the window.
"""

import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import closing
from datetime import datetime
from enum import Enum
from itertools import islice
from typing import NamedTuple

from src.utils import logger
from src.utils.exceptions import (
    EtlServiceError,
    FeedError,
    FeedStreamError,
    DecodeError,
    TransformError,
    ReportError,
    StoreError,
    ListingError,
    CompletionError,
    ConfigurationError,
)
from src.ingestion.config import settings
from src.ingestion.components.file_feed import FileFeed, FileInfo, create_file_feed
from src.ingestion.components.checkpoint import FileCheckpoint
from src.ingestion.components.store import create_store
from src.ingestion.components.writer import IdempotentWriter
from src.ingestion.documents.report import Decoder, decode_report
from src.ingestion.documents.transform import build_entities
from src.notifications.stream import CompletionSink


class FileStatus(str, Enum):
    """Outcome of one file in a window."""
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"  # Failed and out of retries
    INTERRUPTED = "interrupted"  # Shutdown before all reports were admitted


class ReportStatus(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    DROPPED = "dropped"
    INTERRUPTED = "interrupted"  # Queued when shutdown was requested, never started


class FileOutcome(NamedTuple):
    """Result of processing one file."""
    file: FileInfo
    status: FileStatus
    reports_applied: int = 0
    reports_ignored: int = 0
    reports_dropped: int = 0
    retries: int = 0
    error_category: str | None = None
    error_message: str | None = None


class WindowResult(NamedTuple):
    """Result of processing one window."""
    after: datetime
    before: datetime | None
    next_watermark: datetime
    outcomes: list[FileOutcome]

    def _with_status(self, status: FileStatus) -> list[FileOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def completed(self) -> list[FileOutcome]:
        return self._with_status(FileStatus.COMPLETED)

    @property
    def failed(self) -> list[FileOutcome]:
        return self._with_status(FileStatus.FAILED)

    @property
    def abandoned(self) -> list[FileOutcome]:
        return self._with_status(FileStatus.ABANDONED)

    @property
    def interrupted(self) -> list[FileOutcome]:
        return self._with_status(FileStatus.INTERRUPTED)

    @property
    def files_total(self) -> int:
        return len(self.outcomes)


# Files that leave the window unresolved and hold the watermark back
UNRESOLVED = (FileStatus.FAILED, FileStatus.INTERRUPTED)


def next_watermark(after: datetime, outcomes: list[FileOutcome]) -> datetime:
    """
    Where the next window should start.

    The earliest unresolved file if there is one, so it is picked up again;
    otherwise the latest file this window dealt with. Files after an
    unresolved one are skipped next time through the done set.
    """
    unresolved = [o.file.timestamp for o in outcomes if o.status in UNRESOLVED]
    if unresolved:
        return min(unresolved)
    return max([after] + [o.file.timestamp for o in outcomes])


def categorize_error(error: Exception) -> tuple[str, str]:
    """
    Categorize an error for logging, run records and alerts.

    Returns:
        Tuple of (error_category, error_message)
    """
    if isinstance(error, DecodeError):
        category = "DECODE"
        message = f"Report could not be decoded: {error.message}"
    elif isinstance(error, TransformError):
        category = "TRANSFORM"
        message = f"Report has malformed geodata or keys: {error.message}"
    elif isinstance(error, StoreError):
        category = f"STORE_{error.kind.name}"
        message = f"Store error ({error.collection or 'n/a'}, code {error.code}): {error.message}"
    elif isinstance(error, FeedStreamError):
        category = "FEED_STREAM"
        message = f"Failed to read report file {error.key}: {error.message}"
    elif isinstance(error, FeedError):
        category = "FEED"
        message = f"Report feed error: {error.message}"
    elif isinstance(error, ListingError):
        category = "LISTING"
        message = f"Failed to enumerate window: {error.message}"
    elif isinstance(error, CompletionError):
        category = "COMPLETION"
        message = f"Failed to persist completion of {error.key}: {error.message}"
    elif isinstance(error, ConfigurationError):
        category = "CONFIG"
        message = f"Configuration error: {error}"
    elif isinstance(error, EtlServiceError):
        category = "SERVICE"
        message = f"Service error: {error}"
    else:
        category = "UNEXPECTED"
        message = f"Unexpected error ({type(error).__name__}): {error}"

    return category, message


class IngestionJob:
    """
    Apply the report files of a time window to the store.

    Two bounds hold at once:
    - at most ``max_concurrent_files`` files are open
    - at most ``max_processing_capacity`` reports are in flight across all
      files, and a file reads at most ``file_chunk_size`` reports ahead

    Each file worker returns a FileOutcome; nothing is shared between
    workers except the store.
    """

    def __init__(
        self,
        feed: FileFeed,
        checkpoint: FileCheckpoint,
        writer: IdempotentWriter,
        decode: Decoder = decode_report,
        sink: CompletionSink | None = None,
        max_concurrent_files: int | None = None,
        file_chunk_size: int | None = None,
        max_processing_capacity: int | None = None,
        max_retries: int | None = None,
    ):
        """
        Initialize the ingestion job.

        Args:
            feed: Report file feed
            checkpoint: Per-file progress records
            writer: Idempotent entity writer
            decode: Report decoder
            sink: Receives the poc_id of every applied report
            max_concurrent_files: Files open at once
            file_chunk_size: Reports read from a file per chunk
            max_processing_capacity: Reports in flight across all files
            max_retries: Failed passes before a file is abandoned
        """
        self.feed = feed
        self.checkpoint = checkpoint
        self.writer = writer
        self.decode = decode
        self.sink = sink

        pipeline = settings.pipeline
        self.max_concurrent_files = max_concurrent_files or pipeline.max_concurrent_files
        self.file_chunk_size = file_chunk_size or pipeline.file_chunk_size
        self.max_processing_capacity = max_processing_capacity or pipeline.max_processing_capacity
        self.max_retries = pipeline.max_retries if max_retries is None else max_retries

        self._shutdown = threading.Event()

        logger.info(
            f"IngestionJob initialized: files={self.max_concurrent_files}, "
            f"chunk={self.file_chunk_size}, reports={self.max_processing_capacity}, "
            f"max_retries={self.max_retries}"
        )

    def request_shutdown(self) -> None:
        """Stop admitting files and chunks; in-flight reports still finish."""
        if not self._shutdown.is_set():
            logger.warning("Shutdown requested, no new files or chunks will be admitted")
        self._shutdown.set()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def _select(self, after: datetime, before: datetime | None) -> list[FileInfo]:
        """List the window and drop files that are done or abandoned."""
        try:
            files = self.feed.list_all(after, before)
            done = self.checkpoint.list_done_keys()
            abandoned = self.checkpoint.list_abandoned_keys()
        except (FeedError, StoreError) as e:
            raise ListingError(f"Failed to list files after {after.isoformat()}: {e.message}") from e

        pending = [f for f in files if f.key not in done and f.key not in abandoned]
        logger.info(
            f"Window after {after.isoformat()}: {len(files)} listed, "
            f"{len(files) - len(pending)} already done or abandoned, {len(pending)} to process"
        )
        return pending

    def process(self, after: datetime, before: datetime | None = None) -> WindowResult:
        """
        Process every pending file with ``after <= timestamp < before``.

        Args:
            after: Inclusive window start
            before: Exclusive window end, None for open-ended

        Returns:
            WindowResult with per-file outcomes and the next watermark

        Raises:
            ListingError: If the window could not be enumerated
            CompletionError: If a completion marker could not be written
                (raised once every in-flight file has finished)
        """
        pending = self._select(after, before)
        if not pending:
            return WindowResult(after=after, before=before, next_watermark=after, outcomes=[])

        outcomes: list[FileOutcome] = []
        completion_errors: list[CompletionError] = []

        with ThreadPoolExecutor(
            max_workers=self.max_processing_capacity,
            thread_name_prefix="report",
        ) as report_pool, ThreadPoolExecutor(
            max_workers=self.max_concurrent_files,
            thread_name_prefix="file",
        ) as file_pool:
            futures = [file_pool.submit(self._process_file, file, report_pool) for file in pending]
            for future in futures:
                try:
                    outcomes.append(future.result())
                except CompletionError as e:
                    completion_errors.append(e)

        if completion_errors:
            raise completion_errors[0]

        watermark = next_watermark(after, outcomes)
        result = WindowResult(after=after, before=before, next_watermark=watermark, outcomes=outcomes)

        logger.info(
            f"Window done: {len(result.completed)} completed, {len(result.failed)} failed, "
            f"{len(result.abandoned)} abandoned, {len(result.interrupted)} interrupted; "
            f"next watermark {watermark.isoformat()}"
        )
        return result

    def _process_file(self, file: FileInfo, report_pool: ThreadPoolExecutor) -> FileOutcome:
        """Apply one file; per-file failures become outcomes, not exceptions."""
        if self._shutdown.is_set():
            return FileOutcome(file=file, status=FileStatus.INTERRUPTED)

        logger.debug(f"Opening {file.key} ({file.size} bytes)")
        counts = {status: 0 for status in ReportStatus}
        try:
            self.checkpoint.init_file(file)
            interrupted = self._apply_reports(file, report_pool, counts)
        except Exception as e:
            return self._fail_file(file, e, counts)

        if interrupted:
            logger.info(f"Interrupted {file.key} after {counts[ReportStatus.APPLIED]} reports")
            return self._outcome(file, FileStatus.INTERRUPTED, counts)

        try:
            self.checkpoint.mark_done(file.key)
        except StoreError as e:
            logger.error(f"Failed to mark {file.key} done: {e.message}")
            raise CompletionError(f"Failed to mark {file.key} done: {e.message}", key=file.key) from e

        logger.info(
            f"Completed {file.key}: {counts[ReportStatus.APPLIED]} applied, "
            f"{counts[ReportStatus.IGNORED]} ignored, {counts[ReportStatus.DROPPED]} dropped"
        )
        return self._outcome(file, FileStatus.COMPLETED, counts)

    def _apply_reports(
        self,
        file: FileInfo,
        report_pool: ThreadPoolExecutor,
        counts: dict[ReportStatus, int],
    ) -> bool:
        """
        Apply a file's reports chunk by chunk.

        Returns:
            True if shutdown stopped the file before its last chunk
        """
        with closing(self.feed.stream_file(file)) as reports:
            while True:
                chunk = list(islice(reports, self.file_chunk_size))
                if not chunk:
                    return False
                if self._shutdown.is_set():
                    return True

                futures: list[Future] = [
                    report_pool.submit(self._apply_report, file, buf) for buf in chunk
                ]
                # Let every admitted write finish before reporting a failure
                wait(futures)
                for future in futures:
                    counts[future.result()] += 1
                if counts[ReportStatus.INTERRUPTED]:
                    return True

    def _apply_report(self, file: FileInfo, buf: bytes) -> ReportStatus:
        """Decode, transform and write one report."""
        if self._shutdown.is_set():
            return ReportStatus.INTERRUPTED

        try:
            entities = build_entities(self.decode(buf))
        except ReportError as e:
            category, message = categorize_error(e)
            logger.warning(f"Dropping report in {file.key} [{category}]: {message}")
            return ReportStatus.DROPPED

        if entities is None:
            logger.debug(f"Ignoring report without selected witnesses in {file.key}")
            return ReportStatus.IGNORED

        poc_id = self.writer.write(entities)
        if self.sink is not None:
            self.sink.put(poc_id)
        return ReportStatus.APPLIED

    def _fail_file(self, file: FileInfo, error: Exception, counts: dict[ReportStatus, int]) -> FileOutcome:
        """Count a retry for a failed file and abandon it past the budget."""
        category, message = categorize_error(error)
        logger.warning(f"File {file.key} FAILED [{category}]: {message}")
        logger.debug(f"Full traceback:\n{''.join(traceback.format_exception(error))}")

        status = FileStatus.FAILED
        retries = 0
        try:
            retries = self.checkpoint.increment_retry(file.key)
            if retries > self.max_retries:
                self.checkpoint.mark_abandoned(file.key)
                status = FileStatus.ABANDONED
        except StoreError as e:
            logger.error(f"Could not record retry for {file.key}: {e.message}")

        return self._outcome(file, status, counts, retries, category, message)

    @staticmethod
    def _outcome(
        file: FileInfo,
        status: FileStatus,
        counts: dict[ReportStatus, int],
        retries: int = 0,
        error_category: str | None = None,
        error_message: str | None = None,
    ) -> FileOutcome:
        return FileOutcome(
            file=file,
            status=status,
            reports_applied=counts[ReportStatus.APPLIED],
            reports_ignored=counts[ReportStatus.IGNORED],
            reports_dropped=counts[ReportStatus.DROPPED],
            retries=retries,
            error_category=error_category,
            error_message=error_message,
        )


def create_job(sink: CompletionSink | None = None) -> IngestionJob:
    """
    Wire an IngestionJob from settings.

    Raises:
        ConfigurationError: If a component cannot be initialized
    """
    try:
        feed = create_file_feed()
    except Exception as e:
        raise ConfigurationError(f"Failed to initialize report feed: {e}")

    try:
        store = create_store()
    except Exception as e:
        raise ConfigurationError(f"Failed to initialize document store: {e}")

    return IngestionJob(
        feed=feed,
        checkpoint=FileCheckpoint(store),
        writer=IdempotentWriter(store),
        sink=sink,
    )


__all__ = [
    "FileStatus",
    "FileOutcome",
    "WindowResult",
    "IngestionJob",
    "next_watermark",
    "categorize_error",
    "create_job",
]
