"""
Proof-of-coverage ETL service.

This module provides:
- A report feed over S3 (or a local directory)
- Geodata enrichment and the beacon/hotspot/edge transform
- Idempotent writes to ArangoDB with per-file checkpoints
- A driver that advances a watermark window by window

Quick start:
    from src.ingestion import start_scheduler
    start_scheduler()  # Follow the feed from the last recorded watermark

One-time window:
    from src.ingestion import create_scheduler
    result = create_scheduler().run_once(after, before)

Configuration (environment variables):
    FEED_BUCKET_NAME / FEED_PREFIX: Where report files live
    STORE_ENDPOINT / STORE_DATABASE: ArangoDB connection
    PIPELINE_MAX_CONCURRENT_FILES / PIPELINE_MAX_PROCESSING_CAPACITY: Concurrency
    SCHEDULER_INTERVAL_SECONDS: Tick interval (default: 10)
"""

from src.ingestion.config import settings, get_settings
from src.ingestion.components import (
    ArangoStore,
    MemoryStore,
    create_store,
    S3FileFeed,
    LocalFileFeed,
    create_file_feed,
    FileCheckpoint,
    IdempotentWriter,
)
from src.ingestion.db import (
    RunStatus,
    RunRecord,
    RunRepository,
    create_repository,
)
from src.ingestion.jobs import (
    IngestionJob,
    WindowResult,
    create_job,
    IngestionScheduler,
    create_scheduler,
    start_scheduler,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Components
    "ArangoStore",
    "MemoryStore",
    "create_store",
    "S3FileFeed",
    "LocalFileFeed",
    "create_file_feed",
    "FileCheckpoint",
    "IdempotentWriter",
    # Database
    "RunStatus",
    "RunRecord",
    "RunRepository",
    "create_repository",
    # Jobs
    "IngestionJob",
    "WindowResult",
    "create_job",
    "IngestionScheduler",
    "create_scheduler",
    "start_scheduler",
]
