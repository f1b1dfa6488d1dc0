from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from footprints.transform import canonical_attributes
from footprints.types import Feature, Fragment, FullBBox, MergedFootprint
from geo.aoi import BBox
from geo.ops import GeometryError, geometry_bbox

logger = logging.getLogger(__name__)

Evaluator = Callable[[dict[str, Any]], bool]


def fragment_bbox(fragment: Fragment) -> BBox | None:
    try:
        return geometry_bbox(fragment.geometry)
    except GeometryError as e:
        logger.debug("skipping fragment geometry for %s: %s", fragment.feature_id, e)
        return None


def merge_fragments(fragments: Iterable[Fragment]) -> dict[str, MergedFootprint]:
    """
    Fold tile fragments by identity, keeping the first fragment's properties.

    The result preserves first-occurrence order. Fragments without an identity are
    ignored; fragments with malformed geometry still register the identity but don't
    contribute to its bbox.
    """
    firsts: dict[str, Fragment] = {}
    boxes: dict[str, BBox | None] = {}
    counts: dict[str, int] = {}
    for f in fragments:
        fid = f.feature_id
        if fid is None:
            continue
        if fid not in firsts:
            firsts[fid] = f
            boxes[fid] = None
            counts[fid] = 0
        counts[fid] += 1
        b = fragment_bbox(f)
        if b is None:
            continue
        prev = boxes[fid]
        boxes[fid] = b if prev is None else prev.union(b)

    return {
        fid: MergedFootprint(
            feature_id=fid,
            fragment=firsts[fid],
            bbox=boxes[fid],
            fragment_count=counts[fid],
        )
        for fid in firsts
    }


def full_bbox(fragments: Iterable[Fragment], feature_id: str) -> FullBBox | None:
    """
    Union bbox of every loaded fragment of `feature_id`, plus one representative.

    None means "not loaded yet" (tiles may still be streaming), not "doesn't exist".
    """
    fid = str(feature_id)
    first: Fragment | None = None
    out: BBox | None = None
    for f in fragments:
        if f.feature_id != fid:
            continue
        if first is None:
            first = f
        b = fragment_bbox(f)
        if b is None:
            continue
        out = b if out is None else out.union(b)
    if first is None or out is None:
        return None
    return FullBBox(bbox=out, fragment=first)


def feature_from_fragment(fragment: Fragment, *, bbox: BBox | None = None) -> Feature:
    fid = fragment.feature_id
    if fid is None:
        raise ValueError("fragment has no identity")
    return Feature(
        id=fid,
        geometry=fragment.geometry,
        attributes=canonical_attributes(fragment.props),
        bbox=bbox,
    )


def extract_visible_features(
    fragments: Iterable[Fragment],
    *,
    view: BBox,
    evaluate: Evaluator,
) -> list[Feature]:
    """
    Deduplicated, filtered features intersecting the viewport, most recent first.

    Stateless: calling it twice on the same fragments yields the same list.
    """
    out: list[Feature] = []
    for fid, merged in merge_fragments(fragments).items():
        if not evaluate(merged.props):
            continue
        # No usable geometry at all: include rather than drop.
        if merged.bbox is not None and not merged.bbox.intersects(view):
            continue
        out.append(feature_from_fragment(merged.fragment, bbox=merged.bbox))

    # Missing timestamps sort as "" and land last; sort is stable for ties.
    out.sort(key=lambda f: f.attributes.acquisition_end or "", reverse=True)
    return out
