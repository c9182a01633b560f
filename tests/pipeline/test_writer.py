"""
Tests for the idempotent writer's merge policies.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from src.utils.exceptions import ErrorKind, StoreError
from src.ingestion.components.memory_store import MemoryStore
from src.ingestion.components.writer import IdempotentWriter
from src.ingestion.documents import build_entities
from src.ingestion.documents.models import (
    BEACON_COLLECTION,
    HOTSPOT_COLLECTION,
    WITNESS_EDGE_COLLECTION,
    to_millis,
)
from tests.pipeline.factories import (
    BEACON_KEY,
    WITNESS_A,
    WITNESS_B,
    report,
    witness,
)


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class StepClock:
    """Clock that moves forward one second per call."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def fixed_clock() -> datetime:
    return NOW


def test_first_write_creates_all_documents():
    store = MemoryStore()
    entities = build_entities(report())

    poc_id = IdempotentWriter(store, clock=fixed_clock).write(entities)

    assert poc_id == entities.beacon.poc_id
    assert store.get(BEACON_COLLECTION, poc_id) is not None

    beacon_hotspot = store.get(HOTSPOT_COLLECTION, BEACON_KEY)
    assert beacon_hotspot["poc_ids"] == [poc_id]
    assert beacon_hotspot["last_updated_at"] == to_millis(NOW)
    assert store.get(HOTSPOT_COLLECTION, WITNESS_A)["poc_ids"] == []

    edge = store.get(WITNESS_EDGE_COLLECTION, entities.edges[0].key)
    assert edge["_from"] == f"hotspots/{BEACON_KEY}"
    assert edge["_to"] == f"hotspots/{WITNESS_A}"
    assert edge["count"] == 1
    assert edge["snr_hist"] == {"10": 1}
    assert edge["signal_hist"] == {"-90": 1}
    assert edge["ingest_latency_hist"] == {"2000": 1}
    # Single observations only live in the histograms
    assert not {"witness_snr", "witness_signal", "ingest_latency"} & edge.keys()


def test_replaying_a_report_is_idempotent():
    store = MemoryStore()
    writer = IdempotentWriter(store, clock=StepClock())
    entities = build_entities(report())
    edge_key = entities.edges[0].key

    writer.write(entities)
    beacon_before = store.get(BEACON_COLLECTION, entities.beacon.key)
    hotspot_before = store.get(HOTSPOT_COLLECTION, BEACON_KEY)
    edge_before = store.get(WITNESS_EDGE_COLLECTION, edge_key)

    writer.write(entities)
    beacon_after = store.get(BEACON_COLLECTION, entities.beacon.key)
    hotspot_after = store.get(HOTSPOT_COLLECTION, BEACON_KEY)
    edge_after = store.get(WITNESS_EDGE_COLLECTION, edge_key)

    assert beacon_after == beacon_before

    assert hotspot_after["last_updated_at"] > hotspot_before["last_updated_at"]
    hotspot_after.pop("last_updated_at")
    hotspot_before.pop("last_updated_at")
    assert hotspot_after == hotspot_before

    assert edge_after["count"] == edge_before["count"] + 1
    for field in ("snr_hist", "signal_hist", "ingest_latency_hist"):
        assert sum(edge_after[field].values()) == sum(edge_before[field].values()) + 1
    assert edge_after["snr_hist"] == {"10": 2}


def test_edge_count_matches_histogram_totals():
    store = MemoryStore()
    writer = IdempotentWriter(store, clock=fixed_clock)

    for i, snr in enumerate([5, 5, 8, 12]):
        writer.write(build_entities(report(poc_id=f"poc-{i}".encode(), selected=[witness(snr=snr)])))

    edge = next(iter(store.all(WITNESS_EDGE_COLLECTION).values()))
    assert edge["count"] == 4
    assert edge["snr_hist"] == {"5": 2, "8": 1, "12": 1}
    for field in ("snr_hist", "signal_hist", "ingest_latency_hist"):
        assert sum(edge[field].values()) == edge["count"]


def _final_state(order: list) -> tuple[dict, dict]:
    store = MemoryStore()
    writer = IdempotentWriter(store, clock=fixed_clock)
    for value in order:
        writer.write(build_entities(value))

    hotspots = store.all(HOTSPOT_COLLECTION)
    for doc in hotspots.values():
        doc["poc_ids"] = sorted(doc["poc_ids"])
    return hotspots, store.all(WITNESS_EDGE_COLLECTION)


def test_application_order_does_not_matter():
    a = report(poc_id=b"poc-a", selected=[witness(WITNESS_A, snr=4), witness(WITNESS_B, snr=9)])
    b = report(poc_id=b"poc-b", selected=[witness(WITNESS_A, snr=7)])

    assert _final_state([a, b]) == _final_state([b, a])


def test_edge_does_not_keep_first_observation():
    low = report(poc_id=b"poc-low", selected=[witness(snr=4)])
    high = report(poc_id=b"poc-high", selected=[witness(snr=7)])

    _, low_first = _final_state([low, high])
    _, high_first = _final_state([high, low])

    assert low_first == high_first
    edge = next(iter(low_first.values()))
    assert edge["snr_hist"] == {"4": 1, "7": 1}

    hotspots, edges = _final_state([a, b])
    assert len(hotspots[BEACON_KEY]["poc_ids"]) == 2


def test_existing_beacon_is_not_an_error():
    store = Mock()
    store.insert.side_effect = StoreError("exists", kind=ErrorKind.CONFLICT)

    writer = IdempotentWriter(store, clock=fixed_clock)
    entities = build_entities(report())

    assert writer.write(entities) == entities.beacon.poc_id
    # Hotspots and edges are still applied, before the beacon
    assert store.upsert_merge.call_count == len(entities.hotspots) + len(entities.edges)


@pytest.mark.parametrize("kind", [ErrorKind.TRANSIENT, ErrorKind.FATAL])
def test_store_errors_propagate(kind):
    store = Mock()
    store.upsert_merge.side_effect = StoreError("boom", kind=kind)

    with pytest.raises(StoreError):
        IdempotentWriter(store, clock=fixed_clock).write(build_entities(report()))

    store.insert.assert_not_called()


def test_beacon_insert_errors_other_than_conflict_propagate():
    store = Mock()
    store.insert.side_effect = StoreError("down", kind=ErrorKind.TRANSIENT)

    with pytest.raises(StoreError):
        IdempotentWriter(store, clock=fixed_clock).write(build_entities(report()))
