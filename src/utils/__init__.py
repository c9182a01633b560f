"""
Utility modules for the proof-of-coverage ETL service.

Provides:
    - logger: Loguru-based logging with stdout and file output
    - exceptions: Custom exception classes for error handling
"""

from src.utils.logger import logger, setup_logger
from src.utils.exceptions import (
    # Base
    EtlServiceError,
    # Feed
    FeedError,
    FeedListingError,
    FeedStreamError,
    FeedConfigurationError,
    # Report
    ReportError,
    DecodeError,
    TransformError,
    # Store
    ErrorKind,
    StoreError,
    StoreConfigurationError,
    # Window
    WindowError,
    ListingError,
    CompletionError,
    # Database
    DatabaseError,
    RunRecordError,
    # Configuration
    ConfigurationError,
    MissingConfigError,
    # Notification
    NotificationError,
)

__all__ = [
    # Logger
    "logger",
    "setup_logger",
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
