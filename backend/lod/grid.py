from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from filters.compiler import CompiledFilter, combine
from filters.expression import Expression, id_in, match_nothing
from footprints.dedupe import merge_fragments
from footprints.types import Fragment
from geo.aoi import BBox
from geo.ops import bbox_centroid
from geo.tiles import lonlat_to_tile, tile_polygon
from lod.policy import (
    LodThresholds,
    RenderBand,
    grid_zoom_for_view_zoom,
    is_large_image,
    render_band,
)


@dataclass(frozen=True)
class GridCell:
    """
    One aggregation bin: a slippy tile at the grid zoom holding >= 1 features.

    `single_id` is set only while the cell holds exactly one feature, so a click can
    select it without another query.
    """

    x: int
    y: int
    z: int
    count: int
    bbox: BBox
    single_id: str | None
    member_ids: tuple[str, ...]

    @property
    def polygon(self) -> dict[str, Any]:
        return tile_polygon(self.z, self.x, self.y)

    def to_geojson(self) -> dict[str, Any]:
        props: dict[str, Any] = {
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "count": self.count,
            "bboxW": self.bbox.min_lon,
            "bboxS": self.bbox.min_lat,
            "bboxE": self.bbox.max_lon,
            "bboxN": self.bbox.max_lat,
        }
        if self.count == 1 and self.single_id is not None:
            props["singleId"] = self.single_id
        return {"type": "Feature", "geometry": self.polygon, "properties": props}


@dataclass(frozen=True)
class GridResult:
    band: RenderBand
    cells: list[GridCell]
    # What the footprint layers should filter by for this pass (None = no filter).
    footprint_predicate: Expression | None
    grid_zoom: int | None
    large_ids: list[str]

    def to_geojson(self) -> dict[str, Any]:
        return cells_to_geojson(self.cells)


def cells_to_geojson(cells: Iterable[GridCell]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": [c.to_geojson() for c in cells]}


def bin_features(items: Iterable[tuple[str, BBox]], *, grid_zoom: int) -> list[GridCell]:
    """
    Bin features by the tile containing their bbox centroid.

    Cells come out in first-occupied order.
    """
    buckets: dict[tuple[int, int], tuple[BBox, list[str]]] = {}
    # (tile_x, tile_y) -> (combined bbox, member ids)
    for fid, b in items:
        lon, lat = bbox_centroid(b)
        key = lonlat_to_tile(grid_zoom, lon, lat)
        prev = buckets.get(key)
        if prev is None:
            buckets[key] = (b, [fid])
        else:
            prev[1].append(fid)
            buckets[key] = (prev[0].union(b), prev[1])

    out: list[GridCell] = []
    for (x, y), (b, members) in buckets.items():
        out.append(
            GridCell(
                x=int(x),
                y=int(y),
                z=int(grid_zoom),
                count=len(members),
                bbox=b,
                single_id=members[0] if len(members) == 1 else None,
                member_ids=tuple(members),
            )
        )
    return out


def aggregate(
    fragments: Iterable[Fragment],
    *,
    zoom: float,
    compiled: CompiledFilter,
    thresholds: LodThresholds | None = None,
) -> GridResult:
    """
    Decide footprint vs. grid rendering for the loaded fragments at this zoom.

    Always a full rebuild: a zoom change invalidates the whole index space.
    """
    t = thresholds or LodThresholds()
    band = render_band(zoom, t)

    if band == "footprints":
        return GridResult(
            band=band,
            cells=[],
            footprint_predicate=compiled.predicate,
            grid_zoom=None,
            large_ids=[],
        )

    large_ids: list[str] = []
    binned: list[tuple[str, BBox]] = []
    for fid, merged in merge_fragments(fragments).items():
        # Features without usable geometry can't be placed in a cell.
        if merged.bbox is None:
            continue
        if not compiled.evaluate(merged.props):
            continue
        if band == "hybrid" and is_large_image(merged.bbox, t):
            large_ids.append(fid)
            continue
        binned.append((fid, merged.bbox))

    if band == "hybrid" and large_ids:
        footprint_predicate = combine(compiled.predicate, id_in(large_ids))
    else:
        footprint_predicate = match_nothing()

    grid_zoom = grid_zoom_for_view_zoom(zoom, t)
    return GridResult(
        band=band,
        cells=bin_features(binned, grid_zoom=grid_zoom),
        footprint_predicate=footprint_predicate,
        grid_zoom=grid_zoom,
        large_ids=large_ids,
    )
