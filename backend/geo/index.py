from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from footprints.types import Fragment
from geo.aoi import BBox
from geo.ops import GeometryError, to_shape


@dataclass
class FragmentIndex:
    """
    STRtree over tile fragments, for "what's under this point / in this box" queries.

    Notes:
    - Input data is EPSG:4326 (lon/lat degrees).
    - Fragments with malformed geometry are left out of the tree; they can never be hit.
    - Results are positions into `fragments`, in their original order.
    """

    fragments: Sequence[Fragment]

    _tree: STRtree | None = field(default=None, repr=False)
    _geoms: list[Any] = field(default_factory=list, repr=False)
    # tree position -> fragment position
    _positions: list[int] = field(default_factory=list, repr=False)

    def at_point(self, lon: float, lat: float) -> list[int]:
        if self._tree is None:
            return []
        q = Point(float(lon), float(lat))
        hits = _to_int_list(self._tree.query(q))
        return sorted(self._positions[i] for i in hits if self._geoms[i].covers(q))

    def in_bbox(self, bbox: BBox) -> list[int]:
        if self._tree is None:
            return []
        q = shapely_box(bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat)
        hits = _to_int_list(self._tree.query(q))
        return sorted(self._positions[i] for i in hits if self._geoms[i].intersects(q))


def build_fragment_index(fragments: Sequence[Fragment]) -> FragmentIndex:
    idx = FragmentIndex(fragments=list(fragments))
    for pos, f in enumerate(idx.fragments):
        try:
            geom = to_shape(f.geometry)
        except GeometryError:
            continue
        idx._geoms.append(geom)
        idx._positions.append(pos)
    idx._tree = STRtree(idx._geoms) if idx._geoms else None
    return idx


def _to_int_list(idxs: Any) -> list[int]:
    if idxs is None:
        return []
    try:
        return [int(i) for i in idxs]
    except Exception:
        try:
            return [int(i) for i in list(idxs)]
        except Exception:
            return []
