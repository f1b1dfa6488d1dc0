from __future__ import annotations

import pytest

from filters import FilterSpec, compile_filter, evaluate, id_in, match_nothing
from footprints.types import Fragment
from geo.aoi import BBox
from lod.grid import aggregate, bin_features
from lod.policy import LodThresholds, grid_zoom_for_view_zoom, is_large_image, render_band


def _frag(fid, w, s, e, n, **props):
    return Fragment(
        geometry={
            "type": "Polygon",
            "coordinates": [[[w, s], [e, s], [e, n], [w, n], [w, s]]],
        },
        props={"_id": fid, **props},
    )


NO_FILTER = compile_filter(FilterSpec())


@pytest.mark.parametrize(
    "zoom,band",
    [(0, "grid"), (7.99, "grid"), (8, "hybrid"), (9.99, "hybrid"), (10, "footprints"), (18, "footprints")],
)
def test_render_band_boundaries(zoom, band):
    assert render_band(zoom) == band


@pytest.mark.parametrize("zoom,grid_zoom", [(0, 4), (-3, 2), (2.7, 6), (9.4, 13), (11, 14), (20, 14)])
def test_grid_zoom_is_view_zoom_plus_offset_clamped(zoom, grid_zoom):
    assert grid_zoom_for_view_zoom(zoom) == grid_zoom


def test_large_image_threshold_is_strict():
    t = LodThresholds(large_image_km2=50.0)
    small = BBox(min_lon=0, min_lat=0, max_lon=0.01, max_lat=0.01)
    big = BBox(min_lon=0, min_lat=0, max_lon=0.09, max_lat=0.09)
    assert not is_large_image(small, t)
    assert is_large_image(big, t)


def test_footprint_band_has_no_cells_and_keeps_user_predicate():
    compiled = compile_filter(FilterSpec(platform="uav"))
    frags = [_frag("a", 0, 0, 0.01, 0.01, platform="uav")]
    result = aggregate(frags, zoom=10, compiled=compiled)
    assert result.band == "footprints"
    assert result.cells == []
    assert result.grid_zoom is None
    assert result.footprint_predicate == compiled.predicate
    assert result.to_geojson() == {"type": "FeatureCollection", "features": []}


def test_low_zoom_bins_everything_and_hides_footprints():
    frags = [
        _frag("a", 0.1, 0.1, 0.11, 0.11),
        _frag("b", 2.0, 2.0, 2.01, 2.01),
        # Huge images still aggregate below the hybrid band.
        _frag("c", 10.0, 10.0, 11.0, 11.0),
    ]
    result = aggregate(frags, zoom=5, compiled=NO_FILTER)
    assert result.band == "grid"
    assert result.grid_zoom == 9
    assert result.footprint_predicate == match_nothing()
    assert result.large_ids == []
    assert sorted(c.count for c in result.cells) == [1, 1, 1]
    assert {c.single_id for c in result.cells} == {"a", "b", "c"}
    for cell in result.cells:
        assert not evaluate(result.footprint_predicate, {"_id": cell.single_id})


def test_hybrid_band_renders_large_images_as_footprints():
    frags = [
        # ~100 km^2
        _frag("big", 0.0, 0.0, 0.09, 0.09),
        # ~1 km^2
        _frag("small", 0.2, 0.2, 0.21, 0.21),
    ]
    result = aggregate(frags, zoom=9.4, compiled=NO_FILTER)
    assert result.band == "hybrid"
    assert result.grid_zoom == 13
    assert result.large_ids == ["big"]
    assert result.footprint_predicate == id_in(["big"])
    assert [c.single_id for c in result.cells] == ["small"]
    assert evaluate(result.footprint_predicate, {"_id": "big"})
    assert not evaluate(result.footprint_predicate, {"_id": "small"})


def test_hybrid_band_without_large_images_renders_no_footprints():
    result = aggregate([_frag("small", 0.2, 0.2, 0.21, 0.21)], zoom=8.5, compiled=NO_FILTER)
    assert result.footprint_predicate == match_nothing()
    assert len(result.cells) == 1


def test_hybrid_predicate_keeps_user_filter():
    compiled = compile_filter(FilterSpec(platform="satellite"))
    frags = [
        _frag("big-sat", 0.0, 0.0, 0.09, 0.09, platform="satellite"),
        _frag("big-uav", 1.0, 1.0, 1.09, 1.09, platform="uav"),
    ]
    result = aggregate(frags, zoom=9, compiled=compiled)
    assert result.large_ids == ["big-sat"]
    assert result.footprint_predicate == ["all", compiled.predicate, id_in(["big-sat"])]


def test_filtered_out_and_geometryless_features_are_not_binned():
    compiled = compile_filter(FilterSpec(platform="uav"))
    frags = [
        _frag("keep", 0.1, 0.1, 0.11, 0.11, platform="uav"),
        _frag("drop", 0.1, 0.1, 0.11, 0.11, platform="satellite"),
        Fragment(geometry=None, props={"_id": "nogeom", "platform": "uav"}),
    ]
    result = aggregate(frags, zoom=4, compiled=compiled)
    assert len(result.cells) == 1
    assert result.cells[0].member_ids == ("keep",)


def test_empty_input_clears_cells():
    result = aggregate([], zoom=3, compiled=NO_FILTER)
    assert result.cells == []
    assert result.to_geojson()["features"] == []


def test_features_sharing_a_tile_share_a_cell():
    items = [
        ("a", BBox(min_lon=0.1, min_lat=0.1, max_lon=0.11, max_lat=0.11)),
        ("b", BBox(min_lon=0.2, min_lat=0.2, max_lon=0.21, max_lat=0.21)),
        ("c", BBox(min_lon=5.0, min_lat=5.0, max_lon=5.01, max_lat=5.01)),
    ]
    cells = bin_features(items, grid_zoom=9)
    assert [c.count for c in cells] == [2, 1]
    shared = cells[0]
    assert shared.single_id is None
    assert shared.member_ids == ("a", "b")
    assert shared.bbox.as_list() == [0.1, 0.1, 0.21, 0.21]

    props = shared.to_geojson()["properties"]
    assert props["count"] == 2
    assert "singleId" not in props
    assert (props["bboxW"], props["bboxS"], props["bboxE"], props["bboxN"]) == (0.1, 0.1, 0.21, 0.21)
    assert cells[1].to_geojson()["properties"]["singleId"] == "c"


def test_seam_fragments_count_once():
    frags = [
        _frag("img", 0.10, 0.10, 0.15, 0.12),
        _frag("img", 0.15, 0.10, 0.20, 0.12),
    ]
    result = aggregate(frags, zoom=6, compiled=NO_FILTER)
    assert [c.count for c in result.cells] == [1]
    assert result.cells[0].bbox.as_list() == [0.10, 0.10, 0.20, 0.12]
