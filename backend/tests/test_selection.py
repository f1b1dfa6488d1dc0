from __future__ import annotations

import pytest

from engine.in_memory import InMemoryMapEngine, make_viewport
from engine.style import (
    FOOTPRINT_FILL_LAYER,
    FOOTPRINT_HIGHLIGHT_LAYER,
    FOOTPRINT_HOVER_LAYER,
    FOOTPRINT_LINE_LAYER,
    FOOTPRINT_SOURCE,
    FULLRES_LAYER,
    FULLRES_SOURCE,
    GRID_SOURCE,
    install_base_style,
)
from filters import FilterSpec, compile_filter, id_equals, match_no_highlight
from footprints.types import Fragment
from lod.grid import aggregate
from previews.manager import PreviewLayerManager
from selection.controller import SelectionController
from selection.fullres import resolve_tms_url


def _frag(fid, w, s, e, n, **props):
    return Fragment(
        geometry={
            "type": "Polygon",
            "coordinates": [[[w, s], [e, s], [e, n], [w, n], [w, s]]],
        },
        props={"_id": fid, **props},
    )


FRAGMENTS = [
    _frag("a", 0.01, 0.01, 0.02, 0.02, title="A", tms="https://tiles.openaerialmap.org/up1/0/file1/{z}/{x}/{y}"),
    _frag("b", 0.05, 0.05, 0.06, 0.06, title="B", uuid="https://bucket.example/uploads/up2/0/file2.tif"),
    _frag("c", 0.07, 0.07, 0.08, 0.08, title="C"),
    _frag("d", 0.075, 0.075, 0.09, 0.09, title="D"),
]


@pytest.fixture
def engine(catalog):
    eng = InMemoryMapEngine(make_viewport(0.05, 0.05, 12))
    install_base_style(eng, catalog)
    eng.load_fragments(FOOTPRINT_SOURCE, list(FRAGMENTS))
    eng.drain_commands()
    return eng


@pytest.fixture
def controller(engine, catalog):
    return SelectionController(
        engine,
        selection=catalog.selection,
        fullres=catalog.fullResolution,
        previews=PreviewLayerManager(engine, catalog.previews),
    )


def _opacities(engine):
    return (
        engine.get_paint_property(FOOTPRINT_FILL_LAYER, "fill-opacity"),
        engine.get_paint_property(FOOTPRINT_LINE_LAYER, "line-opacity"),
    )


def test_select_then_deselect_restores_style(engine, controller):
    before_filters = {
        lid: engine.get_filter(lid) for lid in (FOOTPRINT_HIGHLIGHT_LAYER, FOOTPRINT_HOVER_LAYER)
    }
    before_opacities = _opacities(engine)

    moved = controller.select("a")
    assert moved is True
    assert controller.selected_id == "a"
    assert engine.get_filter(FOOTPRINT_HIGHLIGHT_LAYER) == id_equals("a")
    assert _opacities(engine) == (0.0, 0.15)
    assert controller.state.selected_feature.bbox.as_list() == [0.01, 0.01, 0.02, 0.02]

    controller.deselect()
    assert controller.selected_id is None
    after_filters = {
        lid: engine.get_filter(lid) for lid in (FOOTPRINT_HIGHLIGHT_LAYER, FOOTPRINT_HOVER_LAYER)
    }
    assert after_filters == before_filters
    assert _opacities(engine) == before_opacities
    assert not engine.has_layer(FULLRES_LAYER)


def test_selection_fits_the_full_bbox(engine, controller):
    controller.select("a")
    fit = [c for c in engine.drain_commands() if c["op"] == "fitBounds"]
    assert fit == [
        {
            "op": "fitBounds",
            "bbox": [0.01, 0.01, 0.02, 0.02],
            "padding": 50,
            "maxZoom": 18.0,
            "duration": 1500,
        }
    ]
    assert engine.viewport().zoom >= 14


def test_full_resolution_overlay_follows_selection(engine, controller, catalog):
    controller.select("a")
    src = engine.get_source(FULLRES_SOURCE)
    expected_a = resolve_tms_url(FRAGMENTS[0].props, catalog.fullResolution)
    assert expected_a.startswith("https://titiler.hotosm.org/")
    assert src["tiles"] == [expected_a]
    ids = engine.layer_ids()
    assert ids.index(FULLRES_LAYER) < ids.index(FOOTPRINT_HOVER_LAYER)

    # Selecting another image replaces the overlay.
    controller.select("b")
    expected_b = resolve_tms_url(FRAGMENTS[1].props, catalog.fullResolution)
    assert expected_b != expected_a
    assert engine.get_source(FULLRES_SOURCE)["tiles"] == [expected_b]
    assert engine.layer_ids().count(FULLRES_LAYER) == 1

    # Same image again: nothing to replace.
    engine.drain_commands()
    controller.refresh_full_resolution()
    assert engine.drain_commands() == []


def test_no_full_resolution_below_min_zoom(engine, controller):
    controller.select("a")
    engine.set_viewport(make_viewport(0.015, 0.015, 13.5))
    controller.refresh_full_resolution()
    assert engine.get_source(FULLRES_SOURCE) is None


def test_image_without_any_template_gets_no_overlay(engine, controller):
    controller.select("c")
    assert engine.get_source(FULLRES_SOURCE) is None


def test_click_on_single_footprint_selects_it(controller):
    outcome = controller.handle_click((0.015, 0.015))
    assert outcome.kind == "selected"
    assert outcome.feature_id == "a"
    assert outcome.moved is True


def test_click_on_stacked_footprints_asks_to_disambiguate(engine, controller):
    outcome = controller.handle_click((0.077, 0.077))
    assert outcome.kind == "disambiguate"
    assert sorted(f.id for f in outcome.candidates) == ["c", "d"]
    assert controller.selected_id is None
    assert not [c for c in engine.drain_commands() if c["op"] == "fitBounds"]


def test_click_on_empty_space_deselects(controller):
    controller.select("a")
    outcome = controller.handle_click((0.04, 0.001))
    assert outcome.kind == "deselected"
    assert controller.selected_id is None


def _show_grid(engine, extra=()):
    engine.load_fragments(FOOTPRINT_SOURCE, list(FRAGMENTS) + list(extra))
    engine.set_viewport(make_viewport(1.5, 1.5, 5))
    result = aggregate(
        engine.query_source_features(FOOTPRINT_SOURCE),
        zoom=5,
        compiled=compile_filter(FilterSpec()),
    )
    engine.set_source_data(GRID_SOURCE, result.to_geojson())
    engine.drain_commands()
    return result


def test_click_on_single_member_cell_selects_member(engine, controller):
    _show_grid(engine, extra=[_frag("solo", 3.0, 3.0, 3.01, 3.01)])
    outcome = controller.handle_click((3.005, 3.005))
    assert outcome.kind == "selected"
    assert outcome.feature_id == "solo"
    assert controller.state.selected_feature.bbox.as_list() == [3.0, 3.0, 3.01, 3.01]


def test_click_on_multi_member_cell_fits_the_cell(engine, controller):
    result = _show_grid(engine)
    cell = result.cells[0]
    assert cell.count == 4
    outcome = controller.handle_click((0.015, 0.015))
    assert outcome.kind == "fit_cell"
    assert outcome.bbox.as_list() == pytest.approx(cell.bbox.as_list())
    assert outcome.moved is False
    fit = [c for c in engine.drain_commands() if c["op"] == "fitBounds"]
    assert fit[0]["padding"] == 20
    assert controller.selected_id is None


def test_hover_only_highlights_while_something_else_is_selected(engine, controller):
    controller.handle_mouse_move((0.055, 0.055))
    assert controller.hovered_id is None
    assert engine.get_filter(FOOTPRINT_HOVER_LAYER) == match_no_highlight()

    controller.select("a")
    engine.set_viewport(make_viewport(0.05, 0.05, 12))
    controller.handle_mouse_move((0.055, 0.055))
    assert controller.hovered_id == "b"
    assert engine.get_filter(FOOTPRINT_HOVER_LAYER) == id_equals("b")

    controller.handle_mouse_move((0.015, 0.015))
    assert controller.hovered_id == "a"
    assert engine.get_filter(FOOTPRINT_HOVER_LAYER) == match_no_highlight()

    controller.set_hovered("b")
    controller.deselect()
    assert engine.get_filter(FOOTPRINT_HOVER_LAYER) == match_no_highlight()


def test_fit_is_deferred_until_the_image_loads(engine, controller):
    engine.load_fragments(FOOTPRINT_SOURCE, [])
    assert controller.select("a") is False
    assert controller.state.pending_fit_id == "a"
    assert engine.get_filter(FOOTPRINT_HIGHLIGHT_LAYER) == id_equals("a")
    assert controller.on_idle() is False

    engine.load_fragments(FOOTPRINT_SOURCE, list(FRAGMENTS))
    assert controller.on_idle() is True
    assert controller.state.pending_fit_id is None
    assert controller.state.selected_feature is not None
    # Only once.
    assert controller.on_idle() is False
