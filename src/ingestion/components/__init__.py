"""Components module for the ingestion service."""

from src.ingestion.components.store import (
    Assign,
    Increment,
    BucketIncrement,
    SetUnion,
    Max,
    MergeOp,
    DocumentStore,
    apply_merge_ops,
    create_store,
)
from src.ingestion.components.memory_store import MemoryStore, create_memory_store
from src.ingestion.components.arango_store import ArangoStore, create_arango_store
from src.ingestion.components.file_feed import (
    FileInfo,
    FileFeed,
    S3FileFeed,
    create_file_feed,
)
from src.ingestion.components.local_feed import LocalFileFeed
from src.ingestion.components.checkpoint import FileCheckpoint
from src.ingestion.components.writer import IdempotentWriter

__all__ = [
    # Store
    "Assign",
    "Increment",
    "BucketIncrement",
    "SetUnion",
    "Max",
    "MergeOp",
    "DocumentStore",
    "apply_merge_ops",
    "create_store",
    "MemoryStore",
    "create_memory_store",
    "ArangoStore",
    "create_arango_store",
    # Feed
    "FileInfo",
    "FileFeed",
    "S3FileFeed",
    "create_file_feed",
    "LocalFileFeed",
    # Pipeline stages
    "FileCheckpoint",
    "IdempotentWriter",
]
