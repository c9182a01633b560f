"""Database module for the ingestion service."""

from src.ingestion.db.models import (
    RunStatus,
    RunRecord,
    RunRepository,
    create_repository,
)

__all__ = [
    "RunStatus",
    "RunRecord",
    "RunRepository",
    "create_repository",
]
