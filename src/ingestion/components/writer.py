"""
Idempotent writer.

Applies the documents derived from one report with three merge policies:
- beacons are insert-only; a redelivered report is a no-op
- hotspots merge the poc_id set, keep the latest timestamp and take the
  incoming location, gain and elevation
- edges count every observation and add one to the matching bucket of
  each histogram

Every write is a single atomic store call, so reports can be applied in any
order and by any number of workers at once.
"""

from datetime import datetime, timezone
from typing import Callable

from src.utils import logger
from src.utils.exceptions import StoreError
from src.ingestion.components.store import (
    Assign,
    BucketIncrement,
    DocumentStore,
    Increment,
    Max,
    MergeOp,
    SetUnion,
)
from src.ingestion.documents.models import (
    BEACON_COLLECTION,
    HOTSPOT_COLLECTION,
    WITNESS_EDGE_COLLECTION,
    Beacon,
    Edge,
    Hotspot,
    HotspotRole,
    to_millis,
)
from src.ingestion.documents.transform import Entities


# Histogram field -> Edge attribute it counts
EDGE_HISTOGRAMS = {
    "snr_hist": "witness_snr",
    "signal_hist": "witness_signal",
    "ingest_latency_hist": "ingest_latency",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hotspot_ops(hotspot: Hotspot, now_millis: int) -> list[MergeOp]:
    """Merge policy for an existing hotspot document."""
    doc = hotspot.to_document()
    ops: list[MergeOp] = []
    if hotspot.role is HotspotRole.BEACON:
        ops.append(SetUnion("poc_ids", tuple(hotspot.poc_ids)))
    ops.append(Max("last_updated_at", now_millis))
    ops.extend(Assign(field, doc[field]) for field in Hotspot.LATEST_FIELDS)
    return ops


def edge_ops(edge: Edge, now_millis: int) -> list[MergeOp]:
    """Merge policy for an existing edge document."""
    ops: list[MergeOp] = [Increment("count")]
    for field, attribute in EDGE_HISTOGRAMS.items():
        ops.append(BucketIncrement(field, str(getattr(edge, attribute))))
    ops.append(Max("last_updated_at", now_millis))
    return ops


def edge_document(edge: Edge, now_millis: int) -> dict:
    """First-observation document for an edge."""
    doc = edge.to_document()
    doc["_from"] = f"{HOTSPOT_COLLECTION}/{edge.beacon_pub_key}"
    doc["_to"] = f"{HOTSPOT_COLLECTION}/{edge.witness_pub_key}"
    doc["count"] = 1
    for field, attribute in EDGE_HISTOGRAMS.items():
        doc[field] = {str(getattr(edge, attribute)): 1}
    doc["last_updated_at"] = now_millis
    return doc


class IdempotentWriter:
    """
    Write one report's entities to the store.

    Hotspots and edges are written before the beacon, so a beacon document
    only exists once everything derived from its report has been applied.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the writer.

        Args:
            store: Document store adapter
            clock: Source of "now" for last_updated_at (UTC)
        """
        self.store = store
        self.clock = clock or _utc_now

    def write_hotspot(self, hotspot: Hotspot, now_millis: int) -> None:
        doc = hotspot.to_document()
        doc["last_updated_at"] = now_millis
        self.store.upsert_merge(
            HOTSPOT_COLLECTION,
            hotspot.key,
            doc,
            hotspot_ops(hotspot, now_millis),
        )

    def write_edge(self, edge: Edge, now_millis: int) -> None:
        self.store.upsert_merge(
            WITNESS_EDGE_COLLECTION,
            edge.key,
            edge_document(edge, now_millis),
            edge_ops(edge, now_millis),
        )

    def write_beacon(self, beacon: Beacon) -> bool:
        """
        Insert the beacon document.

        Returns:
            True if inserted, False if it was already present
        """
        try:
            self.store.insert(BEACON_COLLECTION, beacon.to_document())
        except StoreError as e:
            if e.is_conflict:
                logger.debug(f"Beacon already present: {beacon.key}")
                return False
            raise
        return True

    def write(self, entities: Entities) -> str:
        """
        Apply all documents derived from one report.

        Returns:
            The beacon's poc_id

        Raises:
            StoreError: If any write fails (other than an existing beacon)
        """
        now_millis = to_millis(self.clock())

        for hotspot in entities.hotspots:
            self.write_hotspot(hotspot, now_millis)

        for edge in entities.edges:
            self.write_edge(edge, now_millis)

        self.write_beacon(entities.beacon)
        return entities.beacon.poc_id


__all__ = ["IdempotentWriter", "hotspot_ops", "edge_ops", "edge_document"]
