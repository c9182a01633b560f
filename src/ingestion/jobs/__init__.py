"""Jobs module for the ingestion service."""

from src.ingestion.jobs.ingestion_job import (
    FileStatus,
    FileOutcome,
    WindowResult,
    IngestionJob,
    next_watermark,
    categorize_error,
    create_job,
)
from src.ingestion.jobs.scheduler import (
    IngestionScheduler,
    create_scheduler,
    start_scheduler,
)

__all__ = [
    "FileStatus",
    "FileOutcome",
    "WindowResult",
    "IngestionJob",
    "next_watermark",
    "categorize_error",
    "create_job",
    "IngestionScheduler",
    "create_scheduler",
    "start_scheduler",
]
