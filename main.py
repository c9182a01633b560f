"""
IoT proof-of-coverage ETL - Entry Point

Follow the feed from the last recorded watermark:
    python main.py current

Process one window, or one UTC day:
    python main.py history --after 2024-05-01T00:00:00 --before 2024-05-02T00:00:00
    python main.py rehydrate --date 2024-05-01

Create the store database, collections and indexes:
    python main.py init-schema

Environment variables:
    SCHEDULER_INTERVAL_SECONDS: Tick interval (default: 10s)
    FEED_BUCKET_NAME / FEED_PREFIX: Report files location
    STORE_ENDPOINT / STORE_DATABASE: ArangoDB connection
"""

import argparse
import sys
from datetime import date, datetime, time, timedelta, timezone

from src.utils.logger import setup_logger, logger
from src.utils.exceptions import ConfigurationError, NotificationError, StoreError, WindowError
from src.ingestion.config import settings


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def day_window(day: date) -> tuple[datetime, datetime]:
    """The ``[day 00:00, day+1 00:00)`` window in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="IoT proof-of-coverage ETL service"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: from settings)",
    )

    subparsers = parser.add_subparsers(dest="mode", required=True)

    current = subparsers.add_parser("current", help="Follow the feed periodically")
    current.add_argument(
        "--after",
        type=parse_timestamp,
        default=None,
        help="Start watermark (default: last recorded watermark, else now)",
    )
    current.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Tick interval in seconds (default: from settings)",
    )

    history = subparsers.add_parser("history", help="Process one window")
    history.add_argument("--after", type=parse_timestamp, required=True, help="Inclusive window start")
    history.add_argument("--before", type=parse_timestamp, required=True, help="Exclusive window end")

    rehydrate = subparsers.add_parser("rehydrate", help="Process one UTC day")
    rehydrate.add_argument("--date", type=date.fromisoformat, required=True, help="Day as YYYY-MM-DD")

    subparsers.add_parser("init-schema", help="Create database, collections and indexes")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the service."""
    args = build_parser().parse_args(argv)

    # Configure logging
    setup_logger(
        log_level=args.log_level or settings.logging.level,
        log_dir=settings.logging.log_dir,
        log_file=settings.logging.log_file,
        rotation=settings.logging.rotation,
        retention=settings.logging.retention,
    )

    logger.info("=" * 60)
    logger.info("IOT PROOF-OF-COVERAGE ETL SERVICE")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Mode: {args.mode}")

    from src.ingestion import create_scheduler, create_store

    try:
        if args.mode == "init-schema":
            create_store().ensure_schema()
            logger.info("Schema ready")
            return 0

        if args.mode == "current":
            scheduler = create_scheduler(after=args.after, interval_seconds=args.interval)
            scheduler.start()
            return 0

        if args.mode == "history":
            after, before = args.after, args.before
        else:
            after, before = day_window(args.date)

        if before <= after:
            logger.error(f"Empty window: {after.isoformat()} .. {before.isoformat()}")
            return 2

        result = create_scheduler(after=after).run_once(after, before)
        logger.info(
            f"Window result: {len(result.completed)} completed, {len(result.failed)} failed, "
            f"{len(result.abandoned)} abandoned; resume from {result.next_watermark.isoformat()}"
        )
        return 0 if not (result.failed or result.interrupted) else 3

    except WindowError as e:
        logger.error(f"Window failed: {e}")
        return 1
    except (ConfigurationError, NotificationError, StoreError) as e:
        logger.error(f"Startup failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
