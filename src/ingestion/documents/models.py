"""
Document models persisted by the ETL service.

Four collections are written:
- beacons:   one document per accepted report, keyed by poc_id
- hotspots:  one document per device, keyed by public key
- witnesses: beacon -> witness edges, keyed by the pair of location cells
- files:     per-file progress records used for checkpointing
"""

import base64
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from src.ingestion.documents.geo import Geometry

if TYPE_CHECKING:
    from src.ingestion.components.file_feed import FileInfo


BEACON_COLLECTION = "beacons"
HOTSPOT_COLLECTION = "hotspots"
WITNESS_EDGE_COLLECTION = "witnesses"
FILES_COLLECTION = "files"

UNKNOWN_LOCATION = "unknown"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_millis(value: datetime) -> int:
    """Epoch milliseconds of an aware datetime, without float rounding."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def encode_poc_id(poc_id: bytes) -> str:
    """URL-safe, unpadded base64 of the opaque report id."""
    return base64.urlsafe_b64encode(poc_id).rstrip(b"=").decode("ascii")


def edge_key(beacon_location: int | None, witness_location: int | None) -> str:
    """Deterministic key for the (beacon cell, witness cell) pair."""
    beacon_part = UNKNOWN_LOCATION if beacon_location is None else str(beacon_location)
    witness_part = UNKNOWN_LOCATION if witness_location is None else str(witness_location)
    return f"beacon_{beacon_part}_witness_{witness_part}"


class Document(BaseModel):
    """Base for store documents; ``key`` is stored as ``_key``."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(serialization_alias="_key")

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict in store layout."""
        return self.model_dump(mode="json", by_alias=True)


class Witness(BaseModel):
    """A witness embedded in its beacon document."""

    pub_key: str
    ingest_time: datetime
    ingest_time_unix: int
    location: int | None = None
    str_location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    geo: Geometry | None = None
    gain: int = 0
    elevation: int = 0
    hex_scale: float | None = None
    reward_unit: float | None = None
    verification_status: str
    invalid_reason: str
    participant_side: str
    frequency: int = 0
    timestamp: datetime
    tmst: int = 0
    signal: int = 0
    snr: int = 0
    selected: bool = False
    # Always recomputed against the beacon, never taken from upstream
    distance: float = 0.0


class Beacon(Document):
    """One accepted report. Written once, never mutated."""

    poc_id: str
    ingest_time: datetime
    ingest_time_unix: int
    location: int | None = None
    str_location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    geo: Geometry | None = None
    parent_location: int | None = None
    parent_str_location: str | None = None
    parent_latitude: float | None = None
    parent_longitude: float | None = None
    parent_geo: Geometry | None = None
    gain: int = 0
    elevation: int = 0
    hex_scale: float | None = None
    reward_unit: float | None = None
    pub_key: str
    frequency: int = 0
    channel: int = 0
    tx_power: int = 0
    timestamp: datetime
    tmst: int = 0
    witnesses: list[Witness] = Field(default_factory=list)


class HotspotRole(str, Enum):
    """Role a hotspot played in the report it was derived from."""
    BEACON = "beacon"
    WITNESS = "witness"


class Hotspot(Document):
    """A device, merged across every report it took part in."""

    role: HotspotRole = Field(exclude=True)
    # Only the beacon role contributes its poc_id
    poc_ids: list[str] = Field(default_factory=list)
    location: int | None = None
    str_location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    geo: Geometry | None = None
    parent_location: int | None = None
    parent_str_location: str | None = None
    parent_latitude: float | None = None
    parent_longitude: float | None = None
    parent_geo: Geometry | None = None
    gain: int = 0
    elevation: int = 0

    # Scalar fields that follow the most recent report
    LATEST_FIELDS: ClassVar[tuple[str, ...]] = (
        "location",
        "str_location",
        "latitude",
        "longitude",
        "geo",
        "parent_location",
        "parent_str_location",
        "parent_latitude",
        "parent_longitude",
        "parent_geo",
        "gain",
        "elevation",
    )


class Edge(Document):
    """One beacon -> witness observation, aggregated per pair of cells."""

    beacon_pub_key: str
    witness_pub_key: str
    distance: float = 0.0
    # Per-observation values, stored only as histogram buckets
    witness_snr: int = Field(exclude=True)
    witness_signal: int = Field(exclude=True)
    # Witness ingest time minus beacon ingest time, in ms, never negative
    ingest_latency: int = Field(default=0, exclude=True)


class FileRecord(Document):
    """Progress record for one report file."""

    timestamp: datetime
    unix_ts: int
    size: int
    done: bool = False
    retries: int = 0
    abandoned: bool = False

    @classmethod
    def from_file_info(cls, file: "FileInfo") -> "FileRecord":
        return cls(
            key=file.key,
            timestamp=file.timestamp,
            unix_ts=to_millis(file.timestamp),
            size=file.size,
        )


__all__ = [
    "BEACON_COLLECTION",
    "HOTSPOT_COLLECTION",
    "WITNESS_EDGE_COLLECTION",
    "FILES_COLLECTION",
    "UNKNOWN_LOCATION",
    "to_millis",
    "from_millis",
    "encode_poc_id",
    "edge_key",
    "Document",
    "Witness",
    "Beacon",
    "HotspotRole",
    "Hotspot",
    "Edge",
    "FileRecord",
]
