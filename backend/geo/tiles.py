from __future__ import annotations

import math
from typing import Any

from geo.aoi import BBox


_MAX_MERCATOR_LAT = 85.05112878


def lonlat_to_tile(zoom: int, lon: float, lat: float) -> tuple[int, int]:
    """
    Convert lon/lat in EPSG:4326 to slippy tile (x, y) at zoom.
    """
    z = int(zoom)
    n = 2**z

    # Clamp to WebMercator-supported latitudes.
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))

    lon = float(lon)
    lat_rad = math.radians(lat)

    x = int(math.floor((lon + 180.0) / 360.0 * n))
    y = int(
        math.floor(
            (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi)
            / 2.0
            * n
        )
    )
    # Clamp indices to valid tile range.
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def tile_to_lon(zoom: int, x: int) -> float:
    return int(x) / 2 ** int(zoom) * 360.0 - 180.0


def tile_to_lat(zoom: int, y: int) -> float:
    # https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames
    t = math.pi * (1.0 - 2.0 * int(y) / 2 ** int(zoom))
    return math.degrees(math.atan(math.sinh(t)))


def tile_bbox_4326(zoom: int, x: int, y: int) -> BBox:
    """
    Slippy tile (z/x/y) bounds as a WGS84 lon/lat bbox.
    """
    return BBox(
        min_lon=tile_to_lon(zoom, x),
        min_lat=tile_to_lat(zoom, int(y) + 1),
        max_lon=tile_to_lon(zoom, int(x) + 1),
        max_lat=tile_to_lat(zoom, y),
    ).normalized()


def tile_polygon(zoom: int, x: int, y: int) -> dict[str, Any]:
    """
    GeoJSON polygon of a tile, ring starting at the north-west corner.
    """
    b = tile_bbox_4326(zoom, x, y)
    w, s, e, n = b.min_lon, b.min_lat, b.max_lon, b.max_lat
    return {
        "type": "Polygon",
        "coordinates": [[[w, n], [e, n], [e, s], [w, s], [w, n]]],
    }
