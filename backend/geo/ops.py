from __future__ import annotations

import math
from typing import Any, Mapping

from shapely.geometry import Point, shape
from shapely.geometry.base import BaseGeometry

from geo.aoi import BBox

# Kilometers per degree of latitude (and of longitude at the equator).
KM_PER_DEGREE = 111.32


class GeometryError(ValueError):
    """
    Raised for fragments whose geometry is missing or cannot be interpreted.

    Callers recover locally (drop the fragment from bbox-dependent work); it is never
    propagated out of an event handler.
    """


def to_shape(geometry: Mapping[str, Any] | None) -> BaseGeometry:
    if not geometry:
        raise GeometryError("missing geometry")
    try:
        geom = shape(geometry)
    except Exception as e:
        raise GeometryError(f"malformed geometry: {type(e).__name__}: {e}") from e
    if geom.is_empty:
        raise GeometryError("empty geometry")
    return geom


def geometry_bbox(geometry: Mapping[str, Any] | None) -> BBox:
    """
    Bounding box of a GeoJSON geometry (any type).
    """
    min_x, min_y, max_x, max_y = to_shape(geometry).bounds
    if not all(math.isfinite(v) for v in (min_x, min_y, max_x, max_y)):
        raise GeometryError("non-finite coordinates")
    return BBox(min_lon=min_x, min_lat=min_y, max_lon=max_x, max_lat=max_y)


def point_in_geometry(lon: float, lat: float, geometry: Mapping[str, Any] | None) -> bool:
    # covers() counts boundary points as inside, like a click on a footprint edge.
    try:
        return bool(to_shape(geometry).covers(Point(float(lon), float(lat))))
    except GeometryError:
        return False


def bbox_centroid(b: BBox) -> tuple[float, float]:
    return b.center()


def bbox_area_km2(b: BBox) -> float:
    """
    Equirectangular area approximation, longitude scaled by cos(mean latitude).

    Plenty for a "large image" threshold; not meant for geodesic accuracy.
    """
    mean_lat = (b.min_lat + b.max_lat) / 2.0
    width_km = (b.max_lon - b.min_lon) * KM_PER_DEGREE * math.cos(math.radians(mean_lat))
    height_km = (b.max_lat - b.min_lat) * KM_PER_DEGREE
    return abs(width_km * height_km)


def bbox_polygon(b: BBox) -> dict[str, Any]:
    """
    GeoJSON polygon for an axis-aligned bbox (counter-clockwise from south-west).
    """
    w, s, e, n = b.min_lon, b.min_lat, b.max_lon, b.max_lat
    return {
        "type": "Polygon",
        "coordinates": [[[w, s], [e, s], [e, n], [w, n], [w, s]]],
    }


def bbox_corners(b: BBox) -> list[list[float]]:
    """
    Image-source corner order: top-left, top-right, bottom-right, bottom-left.
    """
    return [
        [b.min_lon, b.max_lat],
        [b.max_lon, b.max_lat],
        [b.max_lon, b.min_lat],
        [b.min_lon, b.min_lat],
    ]
