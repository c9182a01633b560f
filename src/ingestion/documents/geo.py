"""
Geospatial enrichment for report locations.

Locations arrive as H3 cell indexes carried as unsigned 64-bit integers.
``locate`` derives the cell centre, its GeoJSON outline and the coarser
parent cell used for regional rollups; ``distance`` is the great-circle
distance between two optional coordinates. Both are pure and total.
"""

from typing import Any, NamedTuple

import h3

from src.utils.exceptions import TransformError


PARENT_RESOLUTION = 5

Geometry = dict[str, Any]


class LocData(NamedTuple):
    """Derived geodata for one (optional) cell."""
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


def cell_to_str(location: int) -> str:
    """Convert a u64 cell index to its hex string form, validating it."""
    if not isinstance(location, int) or isinstance(location, bool) or not 0 <= location < 2**64:
        raise TransformError(f"Invalid H3 index: {location!r}")

    cell = h3.int_to_str(location)
    if not h3.is_valid_cell(cell):
        raise TransformError(f"Invalid H3 index: {location} ({cell})")
    return cell


def cell_geometry(cell: str) -> Geometry:
    """GeoJSON polygon of a cell boundary, in [lng, lat] order with a closed ring."""
    ring = [[lng, lat] for lat, lng in h3.cell_to_boundary(cell)]
    ring.append(ring[0])
    return {"type": "Polygon", "coordinates": [ring]}


def locate(location: int | None) -> LocData:
    """
    Enrich an optional cell index.

    Args:
        location: H3 cell index as an unsigned integer, or None if the
            device reported no fix

    Returns:
        LocData; every field is None when ``location`` is None. The parent
        fields are None when the cell is coarser than PARENT_RESOLUTION.

    Raises:
        TransformError: If ``location`` is not a valid cell index
    """
    if location is None:
        return LocData()

    cell = cell_to_str(location)
    lat, lng = h3.cell_to_latlng(cell)

    parent_fields: dict[str, Any] = {}
    if h3.get_resolution(cell) >= PARENT_RESOLUTION:
        parent = h3.cell_to_parent(cell, PARENT_RESOLUTION)
        parent_lat, parent_lng = h3.cell_to_latlng(parent)
        parent_fields = {
            "parent_location": h3.str_to_int(parent),
            "parent_str_location": parent,
            "parent_latitude": parent_lat,
            "parent_longitude": parent_lng,
            "parent_geo": cell_geometry(parent),
        }

    return LocData(
        location=location,
        str_location=cell,
        latitude=lat,
        longitude=lng,
        geo=cell_geometry(cell),
        **parent_fields,
    )


def distance(
    lat1: float | None,
    lng1: float | None,
    lat2: float | None,
    lng2: float | None,
) -> float:
    """Great-circle distance in km; 0 when any coordinate is unknown."""
    if lat1 is None or lng1 is None or lat2 is None or lng2 is None:
        return 0.0
    return h3.great_circle_distance((lat1, lng1), (lat2, lng2), unit="km")


__all__ = [
    "PARENT_RESOLUTION",
    "LocData",
    "cell_to_str",
    "cell_geometry",
    "locate",
    "distance",
]
