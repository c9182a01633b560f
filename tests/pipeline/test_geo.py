"""
Tests for geodata enrichment.
"""

import h3
import pytest

from src.utils.exceptions import TransformError
from src.ingestion.documents.geo import PARENT_RESOLUTION, LocData, distance, locate
from tests.pipeline.factories import OAK_CELL, SF_CELL, cell


def test_locate_without_location_is_all_absent():
    assert locate(None) == LocData()


def test_locate_derives_cell_and_parent():
    loc = locate(SF_CELL)

    assert loc.location == SF_CELL
    assert loc.str_location == h3.int_to_str(SF_CELL)
    assert loc.latitude == pytest.approx(37.7749, abs=0.01)
    assert loc.longitude == pytest.approx(-122.4194, abs=0.01)

    parent = h3.cell_to_parent(loc.str_location, PARENT_RESOLUTION)
    assert loc.parent_str_location == parent
    assert loc.parent_location == h3.str_to_int(parent)
    assert loc.parent_geo["type"] == "Polygon"


def test_geometry_is_closed_lng_lat_ring():
    ring = locate(SF_CELL).geo["coordinates"][0]

    assert ring[0] == ring[-1]
    # [lng, lat] order
    assert all(-123 < lng < -122 and 37 < lat < 38 for lng, lat in ring)


def test_coarse_cell_has_no_parent():
    loc = locate(cell(37.7749, -122.4194, resolution=3))

    assert loc.str_location is not None
    assert loc.parent_location is None
    assert loc.parent_geo is None


@pytest.mark.parametrize("bad", [12345, -1, 2**64])
def test_invalid_cell_raises(bad):
    with pytest.raises(TransformError):
        locate(bad)


@pytest.mark.parametrize(
    "coords",
    [
        (None, -122.4, 37.8, -122.2),
        (37.7, None, 37.8, -122.2),
        (37.7, -122.4, None, -122.2),
        (37.7, -122.4, 37.8, None),
        (None, None, None, None),
    ],
)
def test_distance_with_unknown_coordinate_is_zero(coords):
    assert distance(*coords) == 0.0


def test_distance_in_kilometres():
    sf, oak = locate(SF_CELL), locate(OAK_CELL)

    km = distance(sf.latitude, sf.longitude, oak.latitude, oak.longitude)

    # SF city hall to downtown Oakland is about 13 km
    assert 10 < km < 17
    assert distance(sf.latitude, sf.longitude, sf.latitude, sf.longitude) == pytest.approx(0.0)
