"""
Test script to run one window against local files and an in-memory store.

Writes a few synthetic report files to samples/ and applies them without
S3 or ArangoDB.
"""

from datetime import datetime, timezone, timedelta

import h3

from src.utils import logger
from src.utils.logger import setup_logger
from src.ingestion.components import (
    FileCheckpoint,
    IdempotentWriter,
    LocalFileFeed,
    MemoryStore,
)
from src.ingestion.documents.models import BEACON_COLLECTION, HOTSPOT_COLLECTION, WITNESS_EDGE_COLLECTION
from src.ingestion.documents.report import BeaconReport, Report, WitnessReport
from src.ingestion.jobs import IngestionJob


# Mumbai and Pune
BEACON_CELL = h3.str_to_int(h3.latlng_to_cell(19.0760, 72.8777, 8))
WITNESS_CELL = h3.str_to_int(h3.latlng_to_cell(18.5204, 73.8567, 8))


def sample_report(index: int, received: datetime) -> bytes:
    witness = WitnessReport(
        pub_key="112WitnessDemo",
        received_timestamp=received + timedelta(seconds=3),
        location=WITNESS_CELL,
        gain=12,
        elevation=4,
        frequency=904_300_000,
        timestamp=received,
        signal=-95 - index,
        snr=8,
    )
    report = Report(
        poc_id=f"sample-poc-{index}".encode(),
        beacon=BeaconReport(
            pub_key="112BeaconDemo",
            received_timestamp=received,
            location=BEACON_CELL,
            gain=30,
            elevation=10,
            frequency=904_300_000,
            channel=3,
            tx_power=27,
            timestamp=received,
        ),
        selected_witnesses=[witness],
    )
    return report.model_dump_json().encode()


def run_local_test():
    """Run a test window with local storage."""

    # Setup logger
    setup_logger(log_level="DEBUG")

    logger.info("=" * 60)
    logger.info("LOCAL INGESTION TEST")
    logger.info("=" * 60)

    feed = LocalFileFeed(base_dir="samples")
    store = MemoryStore()

    start = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=1)
    for n in range(3):
        timestamp = start + timedelta(minutes=n)
        file = feed.write_file(timestamp, [sample_report(n * 10 + i, timestamp) for i in range(5)])
        logger.info(f"Wrote sample file: {file.key}")

    job = IngestionJob(
        feed=feed,
        checkpoint=FileCheckpoint(store),
        writer=IdempotentWriter(store),
        max_concurrent_files=2,
        file_chunk_size=2,
        max_processing_capacity=4,
    )

    result = job.process(after=start)

    logger.info("=" * 60)
    logger.info("TEST COMPLETE!")
    logger.info(f"  Files: {len(result.completed)} completed, {len(result.failed)} failed")
    logger.info(f"  Beacons: {len(store.all(BEACON_COLLECTION))}")
    logger.info(f"  Hotspots: {len(store.all(HOTSPOT_COLLECTION))}")
    logger.info(f"  Edges: {len(store.all(WITNESS_EDGE_COLLECTION))}")
    logger.info(f"  Next watermark: {result.next_watermark.isoformat()}")
    logger.info("=" * 60)

    # Applying the same window again changes nothing
    again = job.process(after=start)
    logger.info(f"Second pass processed {again.files_total} files")


if __name__ == "__main__":
    run_local_test()
