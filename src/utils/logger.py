"""
Loguru-based logging configuration for the proof-of-coverage ETL service.

Usage:
    from src.utils.logger import logger

    logger.info("Processing file...")
    logger.exception("Something went wrong")

Libraries that log through the standard ``logging`` module (python-arango,
botocore, APScheduler) are routed into loguru by ``InterceptHandler``.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

# Remove default handler
logger.remove()

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{thread.name: <14}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{thread.name: <14} | "
    "{name}:{function}:{line} | "
    "{message}"
)

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer", "apscheduler.executors")


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports the right origin
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def intercept_std_logging(level: str = "INFO") -> None:
    """Route the standard library root logger into loguru."""
    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logger(
    log_level: str = "DEBUG",
    log_dir: str | Path = "logs",
    log_file: str = "poc_etl.log",
    rotation: str = "50 MB",
    retention: str = "7 days",
    enable_stdout: bool = True,
    enable_file: bool = True,
) -> None:
    """
    Configure the logger with stdout and file handlers.

    Args:
        log_level: Minimum log level to capture (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory to store log files
        log_file: Name of the log file
        rotation: When to rotate the log file (e.g., "50 MB", "1 day", "00:00")
        retention: How long to keep old log files (e.g., "7 days", "1 week")
        enable_stdout: Whether to output logs to stdout
        enable_file: Whether to output logs to file
    """
    logger.remove()

    if enable_stdout:
        logger.add(
            sys.stdout,
            format=LOG_FORMAT,
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False,
            enqueue=True,  # Workers log from many threads
        )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / log_file,
            format=FILE_LOG_FORMAT,
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    intercept_std_logging(log_level)
    logger.info(f"Logger initialized with level={log_level}")


# Initialize with defaults on import
# Can be reconfigured by calling setup_logger() with custom parameters
setup_logger(log_level="INFO", enable_file=False)


__all__ = ["logger", "setup_logger", "intercept_std_logging", "InterceptHandler"]
