from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

from geo.aoi import BBox
from geo.ops import bbox_area_km2

RenderBand = Literal["grid", "hybrid", "footprints"]


@dataclass(frozen=True)
class LodThresholds:
    large_image_km2: float = 50.0
    hybrid_min_zoom: float = 8.0
    footprint_min_zoom: float = 10.0
    grid_zoom_offset: int = 4
    min_grid_zoom: int = 2
    max_grid_zoom: int = 14


def render_band(zoom: float, thresholds: LodThresholds | None = None) -> RenderBand:
    """
    Which rendering policy applies at a view zoom.

    - footprints: every filtered footprint renders on its own
    - hybrid: large images render as footprints, the rest aggregate into grid cells
    - grid: everything aggregates
    """
    t = thresholds or LodThresholds()
    z = float(zoom)
    if z >= t.footprint_min_zoom:
        return "footprints"
    if z >= t.hybrid_min_zoom:
        return "hybrid"
    return "grid"


def grid_zoom_for_view_zoom(zoom: float, thresholds: LodThresholds | None = None) -> int:
    """
    Tile zoom whose cells act as aggregation bins: a few levels finer than the view.
    """
    t = thresholds or LodThresholds()
    z = int(math.floor(float(zoom))) + int(t.grid_zoom_offset)
    return max(int(t.min_grid_zoom), min(int(t.max_grid_zoom), z))


def is_large_image(bbox: BBox, thresholds: LodThresholds | None = None) -> bool:
    t = thresholds or LodThresholds()
    return bbox_area_km2(bbox) > float(t.large_image_km2)
