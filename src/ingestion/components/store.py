"""
Document store contract and merge vocabulary.

Merge policies are described with small, store-agnostic operations. An
adapter turns a list of them into one atomic "insert, or merge into the
existing document" statement; ``apply_merge_ops`` is the reference
semantics every adapter must match.

All operations are associative and order-independent (set union, max and
sums) except ``Assign``, which is last-writer-wins.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Union


@dataclass(frozen=True)
class Assign:
    """Overwrite ``field`` with ``value``."""
    field: str
    value: Any


@dataclass(frozen=True)
class Increment:
    """Add ``by`` to a numeric ``field`` (missing counts as 0)."""
    field: str
    by: int = 1


@dataclass(frozen=True)
class BucketIncrement:
    """Add 1 to ``field[bucket]`` in a histogram object."""
    field: str
    bucket: str


@dataclass(frozen=True)
class SetUnion:
    """Union ``values`` into the list ``field`` without duplicates."""
    field: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Max:
    """Keep the larger of ``field`` and ``value``."""
    field: str
    value: Any


MergeOp = Union[Assign, Increment, BucketIncrement, SetUnion, Max]


def apply_merge_ops(doc: dict[str, Any], ops: Iterable[MergeOp]) -> dict[str, Any]:
    """Apply merge operations to a copy of ``doc``."""
    merged = dict(doc)
    for op in ops:
        current = merged.get(op.field)
        if isinstance(op, Assign):
            merged[op.field] = op.value
        elif isinstance(op, Increment):
            merged[op.field] = (current or 0) + op.by
        elif isinstance(op, BucketIncrement):
            histogram = dict(current or {})
            histogram[op.bucket] = histogram.get(op.bucket, 0) + 1
            merged[op.field] = histogram
        elif isinstance(op, SetUnion):
            values = list(current or [])
            for value in op.values:
                if value not in values:
                    values.append(value)
            merged[op.field] = values
        elif isinstance(op, Max):
            merged[op.field] = op.value if current is None else max(current, op.value)
        else:
            raise TypeError(f"Unsupported merge operation: {op!r}")
    return merged


class DocumentStore(Protocol):
    """
    Verbs the pipeline needs from the document/graph store.

    Every method raises StoreError with a classified ErrorKind on failure.
    """

    def ensure_schema(self) -> None:
        """Create database, collections and indexes when missing."""
        ...

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    def insert(self, collection: str, doc: dict[str, Any]) -> None:
        """Insert a new document; an existing key raises a CONFLICT error."""
        ...

    def upsert_merge(
        self,
        collection: str,
        key: str,
        insert_doc: dict[str, Any],
        ops: list[MergeOp],
    ) -> None:
        """Atomically insert ``insert_doc`` or apply ``ops`` to the existing document."""
        ...

    def update(self, collection: str, key: str, ops: list[MergeOp]) -> dict[str, Any]:
        """Apply ``ops`` to an existing document and return the new version."""
        ...

    def keys_where(self, collection: str, field: str, value: Any) -> set[str]:
        """Keys of documents whose ``field`` equals ``value``."""
        ...


def create_store() -> DocumentStore:
    """Create the document store selected by settings."""
    from src.ingestion.config import settings

    if settings.store.backend == "memory":
        from src.ingestion.components.memory_store import MemoryStore
        return MemoryStore()

    from src.ingestion.components.arango_store import ArangoStore
    return ArangoStore()


__all__ = [
    "Assign",
    "Increment",
    "BucketIncrement",
    "SetUnion",
    "Max",
    "MergeOp",
    "apply_merge_ops",
    "DocumentStore",
    "create_store",
]
