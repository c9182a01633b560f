"""
Run ledger for the ETL driver.

Every processed window is recorded in SQLite together with the watermark it
produced, so a restarted driver can resume where the last run stopped.
"""

import sqlite3
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import NamedTuple

from src.utils import logger
from src.utils.exceptions import RunRecordError
from src.ingestion.config import settings


class RunStatus(str, Enum):
    """Status of a window run."""
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"  # Window finished, some files failed or were interrupted
    FAILED = "failed"


class RunRecord(NamedTuple):
    """Record of a single window run."""
    id: int | None
    created_at: datetime
    window_start: datetime
    window_end: datetime | None
    next_watermark: datetime | None
    files_total: int
    files_failed: int
    status: RunStatus
    error_message: str | None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "next_watermark": self.next_watermark.isoformat() if self.next_watermark else None,
            "files_total": self.files_total,
            "files_failed": self.files_failed,
            "status": self.status.value,
            "error_message": self.error_message,
        }


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS ingestion_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    window_start TEXT NOT NULL,
    window_end TEXT,
    next_watermark TEXT,
    files_total INTEGER NOT NULL DEFAULT 0,
    files_failed INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT
)
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_runs_created_at ON ingestion_runs(created_at);
CREATE INDEX IF NOT EXISTS idx_runs_status ON ingestion_runs(status);
"""

INSERT_RUN_SQL = """
INSERT INTO ingestion_runs
    (created_at, window_start, window_end, status)
VALUES
    (?, ?, ?, ?)
"""

UPDATE_RUN_SQL = """
UPDATE ingestion_runs
SET next_watermark = ?, files_total = ?, files_failed = ?, status = ?, error_message = ?
WHERE id = ?
"""

SELECT_BY_ID_SQL = "SELECT * FROM ingestion_runs WHERE id = ?"

SELECT_LATEST_SQL = """
SELECT * FROM ingestion_runs
ORDER BY id DESC
LIMIT ?
"""

SELECT_LATEST_WATERMARK_SQL = """
SELECT next_watermark FROM ingestion_runs
WHERE next_watermark IS NOT NULL
ORDER BY id DESC
LIMIT 1
"""


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: tuple) -> RunRecord:
    """Convert database row to RunRecord."""
    return RunRecord(
        id=row[0],
        created_at=datetime.fromisoformat(row[1]),
        window_start=datetime.fromisoformat(row[2]),
        window_end=_parse(row[3]),
        next_watermark=_parse(row[4]),
        files_total=row[5],
        files_failed=row[6],
        status=RunStatus(row[7]),
        error_message=row[8],
    )


class RunRepository:
    """
    Repository for window runs in SQLite.

    Only the driver thread writes to it; connections are opened per call.
    """

    def __init__(self, db_path: str | Path | None = None):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else settings.database.full_path
        self._ensure_database()

    def _ensure_database(self) -> None:
        """Ensure database and tables exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(CREATE_TABLE_SQL)
                cursor.executescript(CREATE_INDEX_SQL)
                conn.commit()
        except sqlite3.Error as e:
            raise RunRecordError(f"Failed to initialize run ledger at {self.db_path}: {e}")

        logger.info(f"Run ledger initialized at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def create_record(
        self,
        window_start: datetime,
        window_end: datetime | None = None,
    ) -> RunRecord:
        """
        Create a pending run record.

        Args:
            window_start: Inclusive start of the window
            window_end: Exclusive end of the window, None when open-ended

        Returns:
            Created RunRecord with assigned ID
        """
        created_at = datetime.now(timezone.utc)

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    INSERT_RUN_SQL,
                    (
                        created_at.isoformat(),
                        window_start.isoformat(),
                        window_end.isoformat() if window_end else None,
                        RunStatus.PENDING.value,
                    ),
                )
                conn.commit()
                record_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise RunRecordError(f"Failed to create run record: {e}")

        logger.debug(f"Created run record with ID: {record_id}")
        return RunRecord(
            id=record_id,
            created_at=created_at,
            window_start=window_start,
            window_end=window_end,
            next_watermark=None,
            files_total=0,
            files_failed=0,
            status=RunStatus.PENDING,
            error_message=None,
        )

    def update_record(
        self,
        record_id: int,
        status: RunStatus,
        next_watermark: datetime | None = None,
        files_total: int = 0,
        files_failed: int = 0,
        error_message: str | None = None,
    ) -> RunRecord | None:
        """
        Store the outcome of a run.

        Returns:
            Updated RunRecord or None if not found
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    UPDATE_RUN_SQL,
                    (
                        next_watermark.isoformat() if next_watermark else None,
                        files_total,
                        files_failed,
                        status.value,
                        error_message,
                        record_id,
                    ),
                )
                conn.commit()
                updated = cursor.rowcount
        except sqlite3.Error as e:
            raise RunRecordError(f"Failed to update run record {record_id}: {e}")

        if not updated:
            logger.warning(f"Run record {record_id} not found for update")
            return None

        logger.debug(f"Updated run record {record_id} with status: {status.value}")
        return self.get_by_id(record_id)

    def get_by_id(self, record_id: int) -> RunRecord | None:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_BY_ID_SQL, (record_id,))
            row = cursor.fetchone()

        return _row_to_record(row) if row else None

    def get_latest(self, limit: int = 10) -> list[RunRecord]:
        """Get the most recent run records."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_LATEST_SQL, (limit,))
            rows = cursor.fetchall()

        return [_row_to_record(row) for row in rows]

    def get_latest_watermark(self) -> datetime | None:
        """Watermark produced by the most recent run that produced one."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_LATEST_WATERMARK_SQL)
            row = cursor.fetchone()

        return _parse(row[0]) if row else None


def create_repository() -> RunRepository:
    """Create a new repository with default settings."""
    return RunRepository()


__all__ = [
    "RunStatus",
    "RunRecord",
    "RunRepository",
    "create_repository",
]
