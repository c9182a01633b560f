"""Report shape, geodata enrichment and the documents derived from reports."""

from src.ingestion.documents.geo import LocData, locate, distance
from src.ingestion.documents.report import (
    BeaconReport,
    WitnessReport,
    Report,
    Decoder,
    decode_report,
)
from src.ingestion.documents.models import (
    BEACON_COLLECTION,
    HOTSPOT_COLLECTION,
    WITNESS_EDGE_COLLECTION,
    FILES_COLLECTION,
    Beacon,
    Witness,
    Hotspot,
    HotspotRole,
    Edge,
    FileRecord,
    edge_key,
    encode_poc_id,
)
from src.ingestion.documents.transform import Entities, build_entities

__all__ = [
    # Geo
    "LocData",
    "locate",
    "distance",
    # Report
    "BeaconReport",
    "WitnessReport",
    "Report",
    "Decoder",
    "decode_report",
    # Documents
    "BEACON_COLLECTION",
    "HOTSPOT_COLLECTION",
    "WITNESS_EDGE_COLLECTION",
    "FILES_COLLECTION",
    "Beacon",
    "Witness",
    "Hotspot",
    "HotspotRole",
    "Edge",
    "FileRecord",
    "edge_key",
    "encode_poc_id",
    # Transform
    "Entities",
    "build_entities",
]
