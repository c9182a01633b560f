"""
Entity transformer.

Turns one decoded report into the documents the writer persists:
a Beacon (with embedded witnesses), one Hotspot per participating device
and one Edge per beacon/witness pair. Deterministic and free of I/O.
"""

import re
from typing import NamedTuple

from src.ingestion.documents.geo import LocData, distance, locate
from src.ingestion.documents.models import (
    Beacon,
    Edge,
    Hotspot,
    HotspotRole,
    Witness,
    edge_key,
    encode_poc_id,
    to_millis,
)
from src.ingestion.documents.report import Report, WitnessReport
from src.utils.exceptions import TransformError


# Public keys travel in their base58check string form
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


class Entities(NamedTuple):
    """Documents derived from one report."""
    beacon: Beacon
    edges: list[Edge]
    hotspots: list[Hotspot]


def validate_pub_key(pub_key: str) -> str:
    """Return the canonical key string, or raise TransformError."""
    if not isinstance(pub_key, str) or not _BASE58_RE.match(pub_key):
        raise TransformError(f"Malformed public key: {pub_key!r}")
    return pub_key


def _build_witness(
    report: WitnessReport,
    loc: LocData,
    selected: bool,
    beacon_loc: LocData,
) -> Witness:
    return Witness(
        pub_key=validate_pub_key(report.pub_key),
        ingest_time=report.received_timestamp,
        ingest_time_unix=to_millis(report.received_timestamp),
        location=loc.location,
        str_location=loc.str_location,
        latitude=loc.latitude,
        longitude=loc.longitude,
        geo=loc.geo,
        gain=report.gain,
        elevation=report.elevation,
        hex_scale=report.hex_scale,
        reward_unit=report.reward_unit,
        verification_status=report.status,
        invalid_reason=report.invalid_reason,
        participant_side=report.participant_side,
        frequency=report.frequency,
        timestamp=report.timestamp,
        tmst=report.tmst,
        signal=report.signal,
        snr=report.snr,
        selected=selected,
        distance=distance(
            beacon_loc.latitude,
            beacon_loc.longitude,
            loc.latitude,
            loc.longitude,
        ),
    )


def _build_hotspot(
    pub_key: str,
    role: HotspotRole,
    loc: LocData,
    gain: int,
    elevation: int,
    poc_ids: list[str] | None = None,
) -> Hotspot:
    return Hotspot(
        key=pub_key,
        role=role,
        poc_ids=poc_ids or [],
        gain=gain,
        elevation=elevation,
        **loc._asdict(),
    )


def build_edge(beacon: Beacon, witness: Witness) -> Edge:
    """Edge for one beacon/witness pair; latency is clamped at zero."""
    return Edge(
        key=edge_key(beacon.location, witness.location),
        beacon_pub_key=beacon.pub_key,
        witness_pub_key=witness.pub_key,
        distance=witness.distance,
        witness_snr=witness.snr,
        witness_signal=witness.signal,
        ingest_latency=max(witness.ingest_time_unix - beacon.ingest_time_unix, 0),
    )


def build_entities(report: Report) -> Entities | None:
    """
    Build the documents for one report.

    Args:
        report: Decoded report

    Returns:
        Entities, or None when the report has no selected witnesses (a
        beacon nobody verifiably heard carries no coverage information)

    Raises:
        TransformError: If a location cell or public key is malformed
    """
    if not report.selected_witnesses:
        return None

    beacon_report = report.beacon
    beacon_pub_key = validate_pub_key(beacon_report.pub_key)
    beacon_loc = locate(beacon_report.location)

    witness_locs: list[LocData] = []
    witnesses: list[Witness] = []
    tagged = [(w, True) for w in report.selected_witnesses]
    tagged += [(w, False) for w in report.unselected_witnesses]
    for witness_report, selected in tagged:
        loc = locate(witness_report.location)
        witness_locs.append(loc)
        witnesses.append(_build_witness(witness_report, loc, selected, beacon_loc))

    poc_id = encode_poc_id(report.poc_id)
    beacon = Beacon(
        key=poc_id,
        poc_id=poc_id,
        ingest_time=beacon_report.received_timestamp,
        ingest_time_unix=to_millis(beacon_report.received_timestamp),
        gain=beacon_report.gain,
        elevation=beacon_report.elevation,
        hex_scale=beacon_report.hex_scale,
        reward_unit=beacon_report.reward_unit,
        pub_key=beacon_pub_key,
        frequency=beacon_report.frequency,
        channel=beacon_report.channel,
        tx_power=beacon_report.tx_power,
        timestamp=beacon_report.timestamp,
        tmst=beacon_report.tmst,
        witnesses=witnesses,
        **beacon_loc._asdict(),
    )

    hotspots = [
        _build_hotspot(
            beacon_pub_key,
            HotspotRole.BEACON,
            beacon_loc,
            beacon.gain,
            beacon.elevation,
            poc_ids=[poc_id],
        )
    ]
    seen = {beacon_pub_key}
    for witness, loc in zip(witnesses, witness_locs):
        if witness.pub_key in seen:
            continue
        seen.add(witness.pub_key)
        hotspots.append(
            _build_hotspot(witness.pub_key, HotspotRole.WITNESS, loc, witness.gain, witness.elevation)
        )

    edges = [build_edge(beacon, witness) for witness in witnesses]

    return Entities(beacon=beacon, edges=edges, hotspots=hotspots)


__all__ = ["Entities", "validate_pub_key", "build_edge", "build_entities"]
