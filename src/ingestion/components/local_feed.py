"""
Local report feed for testing without S3.

Reads report files from a directory laid out like the bucket.
"""

import gzip
from datetime import datetime
from pathlib import Path
from typing import Iterator

from src.utils import logger
from src.utils.exceptions import FeedListingError, FeedStreamError
from src.ingestion.config import settings
from src.ingestion.components.file_feed import (
    FileInfo,
    encode_frames,
    file_key,
    in_window,
    parse_file_key,
    read_frames,
)


class LocalFileFeed:
    """
    Directory-backed report feed.

    Used for testing and development without S3.
    """

    def __init__(self, base_dir: str | Path | None = None, prefix: str | None = None):
        """
        Initialize local feed.

        Args:
            base_dir: Directory holding the report files
            prefix: File name prefix of the report type
        """
        self.base_dir = Path(base_dir or settings.feed.local_dir)
        self.prefix = prefix or settings.feed.prefix
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalFileFeed initialized at: {self.base_dir.absolute()}")

    def write_file(self, timestamp: datetime, buffers: list[bytes]) -> FileInfo:
        """
        Write report buffers as a feed file.

        Returns:
            FileInfo of the written file
        """
        path = self.base_dir / file_key(self.prefix, timestamp)
        data = encode_frames(buffers)
        path.write_bytes(data)

        logger.debug(f"Wrote {len(buffers)} reports to {path}")
        return FileInfo(key=path.name, prefix=self.prefix, timestamp=timestamp, size=len(data))

    def list_all(self, after: datetime, before: datetime | None = None) -> list[FileInfo]:
        try:
            paths = list(self.base_dir.glob(f"{self.prefix}.*.gz"))
            files = []
            for path in paths:
                file = parse_file_key(path.name, self.prefix, path.stat().st_size)
                if file is None:
                    logger.warning(f"Skipping unrecognized file: {path.name}")
                elif in_window(file, after, before):
                    files.append(file)
        except OSError as e:
            raise FeedListingError(f"Failed to list {self.base_dir}: {e}", prefix=self.prefix)

        return sorted(files, key=lambda f: f.timestamp)

    def stream_file(self, file: FileInfo) -> Iterator[bytes]:
        path = self.base_dir / file.key
        try:
            stream = gzip.open(path, "rb")
        except OSError as e:
            raise FeedStreamError(f"Failed to open {path}: {e}", key=file.key)

        with stream:
            yield from read_frames(stream, file.key)


__all__ = ["LocalFileFeed"]
