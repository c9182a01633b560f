"""
Tests for per-file checkpoint records.
"""

from unittest.mock import Mock

import pytest

from src.utils.exceptions import ErrorKind, StoreError
from src.ingestion.components.checkpoint import FileCheckpoint
from src.ingestion.components.memory_store import MemoryStore
from src.ingestion.documents.models import FILES_COLLECTION, to_millis
from tests.pipeline.factories import file_info


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def checkpoint(store) -> FileCheckpoint:
    return FileCheckpoint(store)


def test_init_file_writes_pending_record(store, checkpoint):
    file = file_info(1, size=512)

    assert not checkpoint.file_exists(file.key)
    checkpoint.init_file(file)

    assert checkpoint.file_exists(file.key)
    assert store.get(FILES_COLLECTION, file.key) == {
        "_key": file.key,
        "timestamp": file.timestamp.isoformat().replace("+00:00", "Z"),
        "unix_ts": to_millis(file.timestamp),
        "size": 512,
        "done": False,
        "retries": 0,
        "abandoned": False,
    }


def test_init_file_is_a_noop_when_present(checkpoint):
    file = file_info(1)
    checkpoint.init_file(file)
    checkpoint.increment_retry(file.key)

    checkpoint.init_file(file)

    assert checkpoint.get_retries(file.key) == 1


def test_increment_retry_returns_new_count(checkpoint):
    file = file_info(1)
    checkpoint.init_file(file)

    assert checkpoint.increment_retry(file.key) == 1
    assert checkpoint.increment_retry(file.key) == 2
    assert checkpoint.get_retries(file.key) == 2


def test_get_retries_for_unknown_file(checkpoint):
    assert checkpoint.get_retries("iot_poc.1.gz") == 0


def test_done_and_abandoned_keys(checkpoint):
    files = [file_info(i) for i in range(3)]
    for file in files:
        checkpoint.init_file(file)

    checkpoint.mark_done(files[0].key)
    checkpoint.mark_done(files[0].key)
    checkpoint.mark_abandoned(files[2].key)

    assert checkpoint.list_done_keys() == {files[0].key}
    assert checkpoint.list_abandoned_keys() == {files[2].key}


def test_store_errors_surface():
    store = Mock()
    store.insert.side_effect = StoreError("down", kind=ErrorKind.TRANSIENT)
    store.keys_where.side_effect = StoreError("down", kind=ErrorKind.TRANSIENT)

    checkpoint = FileCheckpoint(store)

    with pytest.raises(StoreError):
        checkpoint.init_file(file_info(1))
    with pytest.raises(StoreError):
        checkpoint.list_done_keys()
