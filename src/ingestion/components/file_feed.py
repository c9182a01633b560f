"""
Report feed backed by S3.

Report files are stored as ``<prefix>.<timestamp_millis>.gz``. Each file is
gzip-compressed and holds a sequence of report buffers, each preceded by
its length as a 4-byte big-endian integer.
"""

import gzip
import re
import struct
import zlib
from datetime import datetime
from typing import BinaryIO, Iterator, NamedTuple, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from src.utils import logger
from src.utils.exceptions import (
    FeedConfigurationError,
    FeedListingError,
    FeedStreamError,
    MissingConfigError,
)
from src.ingestion.config import settings
from src.ingestion.documents.models import from_millis, to_millis


FRAME_HEADER = struct.Struct(">I")


class FileInfo(NamedTuple):
    """A report file as listed by the feed."""
    key: str
    prefix: str
    timestamp: datetime
    size: int


class FileFeed(Protocol):
    """Time-ranged listing and streaming of report files."""

    def list_all(self, after: datetime, before: datetime | None = None) -> list[FileInfo]:
        ...

    def stream_file(self, file: FileInfo) -> Iterator[bytes]:
        ...


def file_key(prefix: str, timestamp: datetime) -> str:
    """Object key for a report file."""
    return f"{prefix}.{to_millis(timestamp)}.gz"


def parse_file_key(key: str, prefix: str, size: int = 0) -> FileInfo | None:
    """
    Parse an object key into a FileInfo.

    Returns:
        FileInfo, or None when the key does not follow the naming scheme
    """
    match = re.fullmatch(rf"{re.escape(prefix)}\.(\d+)\.gz", key)
    if match is None:
        return None
    return FileInfo(
        key=key,
        prefix=prefix,
        timestamp=from_millis(int(match.group(1))),
        size=size,
    )


def in_window(file: FileInfo, after: datetime, before: datetime | None) -> bool:
    return file.timestamp >= after and (before is None or file.timestamp < before)


def read_frames(stream: BinaryIO, key: str) -> Iterator[bytes]:
    """
    Yield length-prefixed buffers from a decompressed stream.

    Raises:
        FeedStreamError: If the stream ends inside a frame or is not valid gzip
    """
    try:
        while True:
            header = stream.read(FRAME_HEADER.size)
            if not header:
                return
            if len(header) < FRAME_HEADER.size:
                raise FeedStreamError(f"Truncated frame header in {key}", key=key)

            (length,) = FRAME_HEADER.unpack(header)
            buf = stream.read(length)
            if len(buf) < length:
                raise FeedStreamError(
                    f"Truncated frame in {key}: expected {length} bytes, got {len(buf)}",
                    key=key,
                )
            yield buf
    except (OSError, EOFError, zlib.error) as e:
        raise FeedStreamError(f"Failed to decompress {key}: {e}", key=key)


def encode_frames(buffers: list[bytes]) -> bytes:
    """Frame and gzip report buffers in the feed file layout."""
    payload = b"".join(FRAME_HEADER.pack(len(buf)) + buf for buf in buffers)
    return gzip.compress(payload)


class S3FileFeed:
    """
    Read report files from an S3 bucket.

    Handles:
    - Listing files in a time window with the list_objects_v2 paginator
    - Streaming and unframing a single file without loading it whole
    """

    def __init__(
        self,
        bucket_name: str | None = None,
        prefix: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ):
        """
        Initialize the S3 feed.

        Args:
            bucket_name: S3 bucket name
            prefix: File name prefix of the report type
            region: AWS region
            endpoint_url: Custom endpoint URL (for LocalStack/MinIO)
            client: Pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name or settings.feed.bucket_name
        self.prefix = prefix or settings.feed.prefix
        self.region = region or settings.feed.region
        self.endpoint_url = endpoint_url or settings.feed.endpoint_url

        if not self.bucket_name:
            raise MissingConfigError("FEED_BUCKET_NAME")
        if not self.prefix:
            raise MissingConfigError("FEED_PREFIX")

        self._client = client or self._create_client()
        logger.info(f"S3 feed initialized for s3://{self.bucket_name}/{self.prefix}")

    def _create_client(self):
        """Create boto3 S3 client."""
        try:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.region,
            }

            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url
                logger.debug(f"Using custom S3 endpoint: {self.endpoint_url}")

            # Use explicit credentials if provided
            if settings.feed.access_key_id and settings.feed.secret_access_key:
                client_kwargs["aws_access_key_id"] = settings.feed.access_key_id
                client_kwargs["aws_secret_access_key"] = settings.feed.secret_access_key

            return boto3.client(**client_kwargs)

        except NoCredentialsError as e:
            raise FeedConfigurationError(f"AWS credentials not found: {e}")

    def list_all(self, after: datetime, before: datetime | None = None) -> list[FileInfo]:
        """
        List report files with ``after <= timestamp < before``.

        Args:
            after: Inclusive lower bound
            before: Exclusive upper bound, or None for no bound

        Returns:
            Files sorted by timestamp

        Raises:
            FeedListingError: If the bucket cannot be listed
        """
        files: list[FileInfo] = []
        start_after = f"{self.prefix}.{to_millis(after)}"

        try:
            paginator = self._client.get_paginator("list_objects_v2")
            pages = paginator.paginate(
                Bucket=self.bucket_name,
                Prefix=self.prefix,
                StartAfter=start_after,
            )
            for page in pages:
                for obj in page.get("Contents", []):
                    file = parse_file_key(obj["Key"], self.prefix, obj.get("Size", 0))
                    if file is None:
                        logger.warning(f"Skipping unrecognized object key: {obj['Key']}")
                        continue
                    if in_window(file, after, before):
                        files.append(file)
        except (ClientError, BotoCoreError) as e:
            raise FeedListingError(
                f"Failed to list s3://{self.bucket_name}/{self.prefix}: {e}",
                prefix=self.prefix,
            )

        files.sort(key=lambda f: f.timestamp)
        logger.debug(f"Listed {len(files)} files in s3://{self.bucket_name} after {after.isoformat()}")
        return files

    def stream_file(self, file: FileInfo) -> Iterator[bytes]:
        """
        Yield the raw report buffers of one file.

        Raises:
            FeedStreamError: If the object cannot be fetched or is malformed
        """
        try:
            response = self._client.get_object(Bucket=self.bucket_name, Key=file.key)
        except (ClientError, BotoCoreError) as e:
            raise FeedStreamError(f"Failed to fetch s3://{self.bucket_name}/{file.key}: {e}", key=file.key)

        body = response["Body"]
        try:
            with gzip.GzipFile(fileobj=body, mode="rb") as stream:
                yield from read_frames(stream, file.key)
        except (ClientError, BotoCoreError) as e:
            raise FeedStreamError(f"Failed reading s3://{self.bucket_name}/{file.key}: {e}", key=file.key)
        finally:
            body.close()


def create_file_feed() -> FileFeed:
    """Create the report feed selected by settings."""
    if settings.feed.backend == "local":
        from src.ingestion.components.local_feed import LocalFileFeed
        return LocalFileFeed()
    return S3FileFeed()


__all__ = [
    "FileInfo",
    "FileFeed",
    "S3FileFeed",
    "create_file_feed",
    "file_key",
    "parse_file_key",
    "in_window",
    "read_frames",
    "encode_frames",
]
