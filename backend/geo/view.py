from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache

from pyproj import Transformer

from geo.aoi import BBox

# MapLibre renders 512px tiles: the world is 512 * 2**zoom pixels wide.
TILE_SIZE_PX = 512.0
WORLD_WIDTH_M = 2.0 * math.pi * 6378137.0
MAX_MERCATOR_LAT = 85.05112878


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@lru_cache(maxsize=1)
def transformer_3857_to_4326() -> Transformer:
    return Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


def _clamp_lat(lat: float) -> float:
    return max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, float(lat)))


def to_mercator(lon: float, lat: float) -> tuple[float, float]:
    x, y = transformer_4326_to_3857().transform(float(lon), _clamp_lat(lat))
    return float(x), float(y)


def from_mercator(x: float, y: float) -> tuple[float, float]:
    lon, lat = transformer_3857_to_4326().transform(float(x), float(y))
    return float(lon), float(lat)


@dataclass(frozen=True)
class Camera:
    center_lon: float
    center_lat: float
    zoom: float


def fit_camera(
    bbox: BBox,
    *,
    width: int,
    height: int,
    padding: float = 0.0,
    max_zoom: float | None = None,
    min_zoom: float = 0.0,
) -> Camera:
    """
    Camera that fits `bbox` into a `width` x `height` px viewport with `padding` px on each side.

    Zoom is computed in Web-Mercator meters (EPSG:3857), like the map does.
    """
    b = bbox.normalized()
    x0, y0 = to_mercator(b.min_lon, b.min_lat)
    x1, y1 = to_mercator(b.max_lon, b.max_lat)
    cx, cy = (x0 + x1) / 2.0, (y0 + y1) / 2.0
    lon, lat = from_mercator(cx, cy)

    avail_w = max(1.0, float(width) - 2.0 * float(padding))
    avail_h = max(1.0, float(height) - 2.0 * float(padding))
    span_x = abs(x1 - x0)
    span_y = abs(y1 - y0)

    candidates: list[float] = []
    if span_x > 0:
        candidates.append(math.log2(avail_w * WORLD_WIDTH_M / (TILE_SIZE_PX * span_x)))
    if span_y > 0:
        candidates.append(math.log2(avail_h * WORLD_WIDTH_M / (TILE_SIZE_PX * span_y)))

    # A degenerate (point) bbox zooms in as far as allowed.
    zoom = min(candidates) if candidates else float(max_zoom if max_zoom is not None else 22.0)
    if max_zoom is not None:
        zoom = min(zoom, float(max_zoom))
    zoom = max(float(min_zoom), zoom)
    return Camera(center_lon=lon, center_lat=lat, zoom=float(zoom))


def viewport_bbox(
    center_lon: float,
    center_lat: float,
    zoom: float,
    *,
    width: int,
    height: int,
) -> BBox:
    """
    Geographic bounds visible for a camera (no rotation or pitch).
    """
    m_per_px = WORLD_WIDTH_M / (TILE_SIZE_PX * (2.0 ** float(zoom)))
    cx, cy = to_mercator(center_lon, center_lat)
    half_w = float(width) * m_per_px / 2.0
    half_h = float(height) * m_per_px / 2.0
    half_world = WORLD_WIDTH_M / 2.0

    west, south = from_mercator(max(-half_world, cx - half_w), max(-half_world, cy - half_h))
    east, north = from_mercator(min(half_world, cx + half_w), min(half_world, cy + half_h))
    return BBox(min_lon=west, min_lat=south, max_lon=east, max_lat=north)
