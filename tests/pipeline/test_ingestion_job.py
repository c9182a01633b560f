"""
Tests for window processing: file selection, failure capture, watermark
computation, concurrency bounds and shutdown.
"""

import threading
import time
from unittest.mock import Mock

import pytest

from src.utils.exceptions import (
    CompletionError,
    DecodeError,
    ErrorKind,
    FeedStreamError,
    ListingError,
    StoreError,
    TransformError,
)
from src.ingestion.components.checkpoint import FileCheckpoint
from src.ingestion.components.memory_store import MemoryStore
from src.ingestion.components.store import Assign
from src.ingestion.components.writer import IdempotentWriter
from src.ingestion.documents.models import BEACON_COLLECTION, FILES_COLLECTION
from src.ingestion.documents.report import decode_report
from src.ingestion.jobs.ingestion_job import (
    FileStatus,
    IngestionJob,
    categorize_error,
)
from tests.pipeline.factories import (
    T0,
    FakeFeed,
    encode,
    failing_listing,
    file_info,
    report,
)


def reports_for(index: int, count: int = 2) -> list[bytes]:
    return [encode(report(poc_id=f"poc-{index}-{n}".encode())) for n in range(count)]


def make_files(count: int, reports_per_file: int = 2) -> dict:
    return {file_info(i): reports_for(i, reports_per_file) for i in range(1, count + 1)}


def make_job(feed, store: MemoryStore | None = None, **kwargs) -> tuple[IngestionJob, MemoryStore]:
    store = store or MemoryStore()
    kwargs.setdefault("max_concurrent_files", 4)
    kwargs.setdefault("file_chunk_size", 2)
    kwargs.setdefault("max_processing_capacity", 4)
    kwargs.setdefault("max_retries", 3)
    job = IngestionJob(
        feed=feed,
        checkpoint=FileCheckpoint(store),
        writer=IdempotentWriter(store),
        **kwargs,
    )
    return job, store


def test_window_completes_and_advances_to_latest_file():
    files = make_files(3)
    sink = Mock()
    job, store = make_job(FakeFeed(files), sink=sink)

    result = job.process(after=T0)

    assert len(result.completed) == 3
    assert result.next_watermark == max(f.timestamp for f in files)
    assert FileCheckpoint(store).list_done_keys() == {f.key for f in files}
    assert len(store.all(BEACON_COLLECTION)) == 6
    assert sink.put.call_count == 6
    assert all(o.reports_applied == 2 for o in result.outcomes)


def test_empty_window_keeps_watermark():
    job, _ = make_job(FakeFeed({}))

    result = job.process(after=T0)

    assert result.next_watermark == T0
    assert result.outcomes == []


def test_done_files_are_skipped():
    files = make_files(3)
    feed = FakeFeed(files)
    job, store = make_job(feed)
    first = next(iter(files))
    checkpoint = FileCheckpoint(store)
    checkpoint.init_file(first)
    checkpoint.mark_done(first.key)

    result = job.process(after=T0)

    assert first.key not in feed.streamed
    assert result.files_total == 2


def test_all_files_done_keeps_watermark():
    files = make_files(2)
    job, store = make_job(FakeFeed(files))
    job.process(after=T0)

    result = job.process(after=T0)

    assert result.outcomes == []
    assert result.next_watermark == T0


def test_watermark_resumes_from_earliest_failed_file():
    files = make_files(5)
    keys = [f.key for f in files]
    third = list(files)[2]
    feed = FakeFeed(files, failures={third.key: 1})
    job, store = make_job(feed)

    result = job.process(after=T0)

    assert result.next_watermark == third.timestamp
    assert [o.file.key for o in result.failed] == [third.key]
    assert result.failed[0].error_category == "FEED_STREAM"
    assert result.failed[0].retries == 1
    checkpoint = FileCheckpoint(store)
    assert checkpoint.list_done_keys() == set(keys) - {third.key}
    assert checkpoint.get_retries(third.key) == 1

    # The next window only re-attempts the failed file
    feed.streamed.clear()
    retry = job.process(after=result.next_watermark)

    assert feed.streamed == [third.key]
    assert retry.next_watermark == third.timestamp
    assert checkpoint.list_done_keys() == set(keys)


def test_retry_exhaustion_abandons_file():
    files = make_files(2)
    bad, good = list(files)
    feed = FakeFeed(files, failures={bad.key: 100})
    job, store = make_job(feed, max_retries=1)
    checkpoint = FileCheckpoint(store)

    first = job.process(after=T0)
    assert first.next_watermark == bad.timestamp
    assert [o.file.key for o in first.failed] == [bad.key]

    second = job.process(after=first.next_watermark)
    assert [o.file.key for o in second.abandoned] == [bad.key]
    assert second.abandoned[0].retries == 2
    # Abandoned files no longer hold the watermark back
    assert second.next_watermark == bad.timestamp
    assert checkpoint.list_abandoned_keys() == {bad.key}
    assert bad.key not in checkpoint.list_done_keys()
    assert store.get(FILES_COLLECTION, bad.key)["done"] is False

    feed.streamed.clear()
    third = job.process(after=T0)
    assert bad.key not in feed.streamed
    assert third.outcomes == []


def test_abandoned_file_does_not_stop_later_progress():
    files = make_files(3)
    first, _, last = list(files)
    feed = FakeFeed(files, failures={first.key: 100})
    job, _ = make_job(feed, max_retries=0)

    result = job.process(after=T0)

    assert [o.file.key for o in result.abandoned] == [first.key]
    assert result.next_watermark == last.timestamp


def test_bad_reports_are_dropped_without_failing_the_file():
    file = file_info(1)
    buffers = [
        b"garbage",
        encode(report(poc_id=b"ok")),
        encode(report(poc_id=b"bad-cell", location=12345)),
        encode(report(poc_id=b"nobody", selected=[])),
    ]
    job, store = make_job(FakeFeed({file: buffers}))

    result = job.process(after=T0)

    outcome = result.outcomes[0]
    assert outcome.status is FileStatus.COMPLETED
    assert (outcome.reports_applied, outcome.reports_dropped, outcome.reports_ignored) == (1, 2, 1)
    assert len(store.all(BEACON_COLLECTION)) == 1


def test_store_error_fails_file():
    file = file_info(1)
    store = MemoryStore()
    writer = Mock()
    writer.write.side_effect = StoreError("unavailable", kind=ErrorKind.TRANSIENT, collection="hotspots")
    job = IngestionJob(
        feed=FakeFeed({file: reports_for(1)}),
        checkpoint=FileCheckpoint(store),
        writer=writer,
        max_concurrent_files=1,
        file_chunk_size=10,
        max_processing_capacity=2,
        max_retries=3,
    )

    result = job.process(after=T0)

    assert result.failed[0].error_category == "STORE_TRANSIENT"
    assert result.next_watermark == file.timestamp
    assert FileCheckpoint(store).get_retries(file.key) == 1


def test_listing_error_aborts_window():
    feed = FakeFeed(make_files(1))
    feed.list_error = failing_listing()
    job, _ = make_job(feed)

    with pytest.raises(ListingError):
        job.process(after=T0)


def test_done_lookup_error_aborts_window():
    store = MemoryStore()
    store.keys_where = Mock(side_effect=StoreError("down", kind=ErrorKind.TRANSIENT))
    job, _ = make_job(FakeFeed(make_files(1)), store=store)

    with pytest.raises(ListingError):
        job.process(after=T0)


class CompletionFailingStore(MemoryStore):
    def update(self, collection, key, ops):
        if Assign("done", True) in ops:
            raise StoreError("lost", kind=ErrorKind.TRANSIENT, collection=collection)
        return super().update(collection, key, ops)


def test_completion_error_is_raised_after_files_finish():
    files = make_files(3)
    store = CompletionFailingStore()
    job, _ = make_job(FakeFeed(files), store=store)

    with pytest.raises(CompletionError):
        job.process(after=T0)

    # Every file's reports were still applied
    assert len(store.all(BEACON_COLLECTION)) == 6


def test_open_files_are_bounded():
    files = make_files(8, reports_per_file=1)
    feed = FakeFeed(files, hold=0.05)
    job, _ = make_job(feed, max_concurrent_files=2)

    result = job.process(after=T0)

    assert len(result.completed) == 8
    assert 1 <= feed.max_open_files <= 2


def test_shutdown_before_window_interrupts_all_files():
    files = make_files(3)
    feed = FakeFeed(files)
    job, store = make_job(feed)
    job.request_shutdown()

    result = job.process(after=T0)

    assert len(result.interrupted) == 3
    assert feed.streamed == []
    assert result.next_watermark == min(f.timestamp for f in files)
    assert FileCheckpoint(store).list_done_keys() == set()


def test_shutdown_mid_file_finishes_admitted_chunk():
    file = file_info(1)
    job, store = make_job(FakeFeed({file: reports_for(1, count=3)}), file_chunk_size=1)

    def decode_then_stop(buf):
        job.request_shutdown()
        return decode_report(buf)

    job.decode = decode_then_stop

    result = job.process(after=T0)

    outcome = result.outcomes[0]
    assert outcome.status is FileStatus.INTERRUPTED
    assert outcome.reports_applied == 1
    assert len(store.all(BEACON_COLLECTION)) == 1
    # Interrupted is not a failure: no retry is counted
    assert FileCheckpoint(store).get_retries(file.key) == 0
    assert result.next_watermark == file.timestamp


def test_shutdown_skips_queued_reports():
    file = file_info(1)
    job, store = make_job(
        FakeFeed({file: reports_for(1, count=50)}),
        file_chunk_size=50,
        max_processing_capacity=1,
    )

    def decode_then_stop(buf):
        job.request_shutdown()
        return decode_report(buf)

    job.decode = decode_then_stop

    result = job.process(after=T0)

    outcome = result.outcomes[0]
    assert outcome.status is FileStatus.INTERRUPTED
    assert outcome.reports_applied == 1
    assert len(store.all(BEACON_COLLECTION)) == 1
    assert FileCheckpoint(store).list_done_keys() == set()


class CountingDecoder:
    """Decoder that records how many reports are decoded at once."""

    def __init__(self, hold: float = 0.01):
        self.hold = hold
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, buf: bytes):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.hold)
            return decode_report(buf)
        finally:
            with self._lock:
                self.active -= 1


def test_reports_in_flight_are_bounded_across_files():
    decoder = CountingDecoder()
    job, store = make_job(
        FakeFeed(make_files(4, reports_per_file=4)),
        decode=decoder,
        max_concurrent_files=4,
        file_chunk_size=4,
        max_processing_capacity=2,
    )

    result = job.process(after=T0)

    assert len(result.completed) == 4
    assert len(store.all(BEACON_COLLECTION)) == 16
    assert 1 <= decoder.max_active <= 2


@pytest.mark.parametrize(
    "error, category",
    [
        (DecodeError("bad"), "DECODE"),
        (TransformError("bad"), "TRANSFORM"),
        (StoreError("x", kind=ErrorKind.CONFLICT), "STORE_CONFLICT"),
        (StoreError("x", kind=ErrorKind.FATAL), "STORE_FATAL"),
        (FeedStreamError("x", key="k"), "FEED_STREAM"),
        (ListingError("x"), "LISTING"),
        (CompletionError("x", key="k"), "COMPLETION"),
        (RuntimeError("x"), "UNEXPECTED"),
    ],
)
def test_categorize_error(error, category):
    assert categorize_error(error)[0] == category
