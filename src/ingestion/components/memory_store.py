"""
In-memory document store for local runs and tests without ArangoDB.

Implements the DocumentStore verbs with the same merge semantics; every
operation runs under one lock so it is atomic with respect to the others.
"""

import copy
import threading
from typing import Any

from src.utils import logger
from src.utils.exceptions import ErrorKind, StoreError
from src.ingestion.components.store import MergeOp, apply_merge_ops


class MemoryStore:
    """
    Dict-backed store keyed by collection then ``_key``.

    Used for testing and development without a database server.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()
        logger.info("MemoryStore initialized")

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def ensure_schema(self) -> None:
        logger.debug("MemoryStore needs no schema")

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._collection(collection).get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def insert(self, collection: str, doc: dict[str, Any]) -> None:
        key = doc["_key"]
        with self._lock:
            documents = self._collection(collection)
            if key in documents:
                raise StoreError(
                    f"unique constraint violated: {collection}/{key}",
                    kind=ErrorKind.CONFLICT,
                    collection=collection,
                )
            documents[key] = copy.deepcopy(doc)

    def upsert_merge(
        self,
        collection: str,
        key: str,
        insert_doc: dict[str, Any],
        ops: list[MergeOp],
    ) -> None:
        with self._lock:
            documents = self._collection(collection)
            existing = documents.get(key)
            if existing is None:
                documents[key] = {**copy.deepcopy(insert_doc), "_key": key}
            else:
                documents[key] = apply_merge_ops(existing, ops)

    def update(self, collection: str, key: str, ops: list[MergeOp]) -> dict[str, Any]:
        with self._lock:
            documents = self._collection(collection)
            existing = documents.get(key)
            if existing is None:
                raise StoreError(
                    f"document not found: {collection}/{key}",
                    kind=ErrorKind.FATAL,
                    collection=collection,
                )
            documents[key] = apply_merge_ops(existing, ops)
            return copy.deepcopy(documents[key])

    def keys_where(self, collection: str, field: str, value: Any) -> set[str]:
        with self._lock:
            return {
                key
                for key, doc in self._collection(collection).items()
                if doc.get(field) == value
            }

    def all(self, collection: str) -> dict[str, dict[str, Any]]:
        """Snapshot of a collection."""
        with self._lock:
            return copy.deepcopy(self._collection(collection))


def create_memory_store() -> MemoryStore:
    """Create a new in-memory store."""
    return MemoryStore()


__all__ = ["MemoryStore", "create_memory_store"]
