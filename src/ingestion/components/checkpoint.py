"""
Checkpoint store client.

Per-file progress records in the ``files`` collection. Every operation is
idempotent and safe to retry; store errors are surfaced to the caller.
"""

from src.utils import logger
from src.utils.exceptions import StoreError
from src.ingestion.components.file_feed import FileInfo
from src.ingestion.components.store import Assign, DocumentStore, Increment
from src.ingestion.documents.models import FILES_COLLECTION, FileRecord


class FileCheckpoint:
    """
    Track which report files are done, retried or abandoned.

    Lifecycle of a record:
    - init_file writes it with done=false the first time a file is selected
    - increment_retry bumps ``retries`` after every failed pass
    - mark_done flips ``done`` once every report has been applied
    - mark_abandoned flags a file that ran out of retries
    """

    def __init__(self, store: DocumentStore, collection: str = FILES_COLLECTION):
        self.store = store
        self.collection = collection

    def file_exists(self, key: str) -> bool:
        return self.store.get(self.collection, key) is not None

    def init_file(self, file: FileInfo) -> None:
        """Write the initial record; a record that already exists is left untouched."""
        record = FileRecord.from_file_info(file)
        try:
            self.store.insert(self.collection, record.to_document())
        except StoreError as e:
            if not e.is_conflict:
                raise
            logger.debug(f"File record already present: {file.key}")

    def mark_done(self, key: str) -> None:
        self.store.update(self.collection, key, [Assign("done", True)])
        logger.debug(f"Marked file done: {key}")

    def increment_retry(self, key: str) -> int:
        """
        Count one more failed pass for a file.

        Returns:
            The new retry count
        """
        doc = self.store.update(self.collection, key, [Increment("retries")])
        return doc["retries"]

    def get_retries(self, key: str) -> int:
        doc = self.store.get(self.collection, key)
        return doc.get("retries", 0) if doc else 0

    def list_done_keys(self) -> set[str]:
        return self.store.keys_where(self.collection, "done", True)

    def mark_abandoned(self, key: str) -> None:
        self.store.update(self.collection, key, [Assign("abandoned", True)])
        logger.warning(f"Marked file abandoned: {key}")

    def list_abandoned_keys(self) -> set[str]:
        return self.store.keys_where(self.collection, "abandoned", True)


__all__ = ["FileCheckpoint"]
