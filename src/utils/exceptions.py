"""
Custom exceptions for the proof-of-coverage ETL service.

Provides a hierarchy of exceptions for different error scenarios:
- Feed errors (listing and streaming report files from the object store)
- Report errors (decoding and transforming a single report)
- Store errors (document/graph store writes, classified by kind)
- Window errors (a whole ingestion window must be retried)
"""

from enum import Enum


class EtlServiceError(Exception):
    """Base exception for all ETL service errors."""

    def __init__(self, message: str, *args, **kwargs):
        self.message = message
        super().__init__(message, *args, **kwargs)


# =============================================================================
# Feed Exceptions
# =============================================================================

class FeedError(EtlServiceError):
    """Base exception for report feed errors."""
    pass


class FeedListingError(FeedError):
    """Error when listing report files in a time window fails."""

    def __init__(self, message: str, prefix: str | None = None):
        self.prefix = prefix
        super().__init__(message)


class FeedStreamError(FeedError):
    """Error when reading the contents of a report file fails."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


class FeedConfigurationError(FeedError):
    """Error with feed configuration (credentials, bucket, directory)."""
    pass


# =============================================================================
# Report Exceptions
# =============================================================================

class ReportError(EtlServiceError):
    """Base exception for errors scoped to a single report."""
    pass


class DecodeError(ReportError):
    """Error when a report buffer cannot be decoded."""
    pass


class TransformError(ReportError):
    """Error when a decoded report carries malformed geodata or keys."""
    pass


# =============================================================================
# Store Exceptions
# =============================================================================

class ErrorKind(str, Enum):
    """Closed classification of store failures."""
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    FATAL = "fatal"


class StoreError(EtlServiceError):
    """Error returned by the document store, classified at the adapter."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.FATAL,
        collection: str | None = None,
        code: int | None = None,
    ):
        self.kind = kind
        self.collection = collection
        self.code = code
        super().__init__(message)

    @property
    def is_conflict(self) -> bool:
        return self.kind is ErrorKind.CONFLICT


class StoreConfigurationError(StoreError):
    """Error with store configuration (endpoint, credentials, database)."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.FATAL)


# =============================================================================
# Window Exceptions
# =============================================================================

class WindowError(EtlServiceError):
    """Base exception for errors that abort a whole ingestion window."""
    pass


class ListingError(WindowError):
    """Candidate files for the window could not be enumerated."""
    pass


class CompletionError(WindowError):
    """A file was applied but its completion marker could not be persisted."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


# =============================================================================
# Database Exceptions
# =============================================================================

class DatabaseError(EtlServiceError):
    """Base exception for run ledger errors."""
    pass


class RunRecordError(DatabaseError):
    """Error when creating or querying run records."""
    pass


# =============================================================================
# Configuration Exceptions
# =============================================================================

class ConfigurationError(EtlServiceError):
    """Error with service configuration."""
    pass


class MissingConfigError(ConfigurationError):
    """Error when required configuration is missing."""

    def __init__(self, config_key: str):
        self.config_key = config_key
        super().__init__(f"Missing required configuration: {config_key}")


# =============================================================================
# Notification Exceptions
# =============================================================================

class NotificationError(EtlServiceError):
    """Error when setting up a notification channel."""
    pass


__all__ = [
    # Base
    "EtlServiceError",
    # Feed
    "FeedError",
    "FeedListingError",
    "FeedStreamError",
    "FeedConfigurationError",
    # Report
    "ReportError",
    "DecodeError",
    "TransformError",
    # Store
    "ErrorKind",
    "StoreError",
    "StoreConfigurationError",
    # Window
    "WindowError",
    "ListingError",
    "CompletionError",
    # Database
    "DatabaseError",
    "RunRecordError",
    # Configuration
    "ConfigurationError",
    "MissingConfigError",
    # Notification
    "NotificationError",
]
