from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, TypeVar

from catalogs.types import CatalogConfig
from engine.debounce import Debouncer
from engine.style import (
    FOOTPRINT_LAYERS,
    FOOTPRINT_SOURCE,
    GRID_SOURCE,
    install_base_style,
    set_basemap,
)
from engine.types import MapEngine, MapEvent
from filters.compiler import CompiledFilter, compile_filter
from filters.types import FilterSpec
from footprints.dedupe import extract_visible_features
from footprints.types import Feature
from geo.aoi import BBox
from lod.grid import GridResult, aggregate
from previews.manager import PreviewLayerManager
from selection.controller import ClickOutcome, SelectionController
from state.url import to_query, write_filters, write_selection, write_view
from telemetry.store import get_pass_log

logger = logging.getLogger(__name__)

T = TypeVar("T")

ObserverKind = Literal["features", "settle", "selection", "hover"]


@dataclass(frozen=True)
class SettleInfo:
    bbox: BBox
    center: tuple[float, float]  # lon, lat
    zoom: float


@dataclass
class ExplorerState:
    """
    Everything the event handlers read. Replaced or updated before dispatch, never
    captured by a handler.
    """

    filters: FilterSpec
    compiled: CompiledFilter
    previews_enabled: bool
    loaded: bool = False
    # Set right before a camera move this core asked for; consumed by the next moveend.
    programmatic_move: bool = False
    # Selection from the URL, applied once the id first shows up in an emitted list.
    pending_selection: str | None = None
    features: list[Feature] = field(default_factory=list)
    grid: GridResult | None = None
    last_settle: SettleInfo | None = None
    url_params: dict[str, str] = field(default_factory=dict)


@dataclass
class EventResult:
    event: str
    features: list[Feature] | None = None
    click: ClickOutcome | None = None
    settle: SettleInfo | None = None
    stats: dict[str, Any] = field(default_factory=dict)


class ExplorerSession:
    """
    One map instance: dispatches engine events through the pipeline

        dedupe -> grid -> previews -> selection

    Each stage is guarded: a failing stage is logged and renders nothing new, the
    rest of the event still runs.
    """

    def __init__(
        self,
        engine: MapEngine,
        catalog: CatalogConfig,
        *,
        session_id: str | None = None,
        filters: FilterSpec | None = None,
        previews_enabled: bool | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.engine = engine
        self.catalog = catalog
        self.thresholds = catalog.lod.thresholds()
        self.previews = PreviewLayerManager(engine, catalog.previews)
        self.selection = SelectionController(
            engine,
            selection=catalog.selection,
            fullres=catalog.fullResolution,
            previews=self.previews,
        )
        spec = filters or FilterSpec()
        self.state = ExplorerState(
            filters=spec,
            compiled=compile_filter(spec),
            previews_enabled=(
                catalog.previews.enabledByDefault if previews_enabled is None else previews_enabled
            ),
        )
        write_filters(self.state.url_params, spec)
        self.debouncer = Debouncer(catalog.settleMs / 1000.0, self._on_settled)
        self._observers: dict[str, list[Callable[..., None]]] = {
            "features": [],
            "settle": [],
            "selection": [],
            "hover": [],
        }
        self._settled_now: SettleInfo | None = None

    # --- Observers ------------------------------------------------------------------

    def subscribe(self, kind: ObserverKind, callback: Callable[..., None]) -> None:
        self._observers[kind].append(callback)

    def _notify(self, kind: ObserverKind, *args: Any) -> None:
        for cb in list(self._observers[kind]):
            try:
                cb(*args)
            except Exception:
                logger.exception("%s observer failed (session=%s)", kind, self.id)

    # --- Read side ------------------------------------------------------------------

    @property
    def selected_id(self) -> str | None:
        return self.selection.selected_id

    @property
    def hovered_id(self) -> str | None:
        return self.selection.hovered_id

    def url_query(self) -> str:
        return to_query(self.state.url_params)

    def poll_settle(self) -> SettleInfo | None:
        """
        Fire the pending settle notification if its delay has passed.
        """
        self._settled_now = None
        self.debouncer.poll()
        return self._settled_now

    # --- Events ---------------------------------------------------------------------

    def dispatch(self, event: MapEvent) -> EventResult:
        self._settled_now = None
        # A settle deadline that expired since the last event fires before this one
        # is handled, so a later movestart cannot swallow it.
        self.debouncer.poll()
        result = EventResult(event=event.type)
        if event.type == "load":
            self._on_load()
        elif not self.state.loaded:
            logger.debug("ignoring %s before load (session=%s)", event.type, self.id)
        elif event.type == "idle":
            self._on_idle(result)
        elif event.type == "movestart":
            self.debouncer.cancel()
        elif event.type == "moveend":
            self._on_moveend()
        elif event.type == "click" and event.lng_lat is not None:
            self._on_click(event.lng_lat, result)
        elif event.type == "mousemove" and event.lng_lat is not None:
            self._on_mousemove(event.lng_lat)
        result.settle = self._settled_now
        return result

    def _on_load(self) -> None:
        self._guarded("style", lambda: install_base_style(self.engine, self.catalog))
        self.state.loaded = True
        self._mirror_view()
        self._guarded("grid", self._apply_grid)

    def _on_idle(self, result: EventResult) -> None:
        timings: dict[str, float] = {}
        t_all = time.perf_counter()

        t0 = time.perf_counter()
        features = self._guarded("features", self._emit_features)
        timings["features"] = (time.perf_counter() - t0) * 1000.0

        t0 = time.perf_counter()
        grid = self._guarded("grid", self._apply_grid)
        timings["grid"] = (time.perf_counter() - t0) * 1000.0

        t0 = time.perf_counter()
        self._guarded("previews", self._reconcile_previews)
        timings["previews"] = (time.perf_counter() - t0) * 1000.0

        t0 = time.perf_counter()
        moved = self._guarded("selection", self.selection.on_idle)
        if moved:
            self.state.programmatic_move = True
        timings["selection"] = (time.perf_counter() - t0) * 1000.0
        timings["total"] = (time.perf_counter() - t_all) * 1000.0

        result.features = features
        result.stats = {
            "band": grid.band if grid is not None else None,
            "counts": {
                "fragments": len(self.engine.query_source_features(FOOTPRINT_SOURCE)),
                "features": len(features or []),
                "cells": len(grid.cells) if grid is not None else 0,
                "previews": len(self.previews.live_ids()),
            },
            "timingsMs": timings,
        }
        self._record_idle_pass(result.stats)

    def _on_moveend(self) -> None:
        self._mirror_view()
        if self.state.programmatic_move:
            self.state.programmatic_move = False
            return
        self.debouncer.arm()

    def _on_click(self, lng_lat: tuple[float, float], result: EventResult) -> None:
        before = self.selected_id
        outcome = self._guarded("click", lambda: self.selection.handle_click(lng_lat))
        result.click = outcome
        if outcome is not None and outcome.moved:
            # The selection fit is ours; not reported as a user move.
            self.state.programmatic_move = True
        self._selection_changed(before)

    def _on_mousemove(self, lng_lat: tuple[float, float]) -> None:
        before = self.hovered_id
        self._guarded("hover", lambda: self.selection.handle_mouse_move(lng_lat))
        if self.hovered_id != before:
            self._notify("hover", self.hovered_id)

    def _on_settled(self) -> None:
        vp = self.engine.viewport()
        info = SettleInfo(bbox=vp.bbox, center=(vp.center_lon, vp.center_lat), zoom=vp.zoom)
        self.state.last_settle = info
        self._settled_now = info
        self._notify("settle", info)

    # --- Operations -----------------------------------------------------------------

    def set_filters(self, spec: FilterSpec) -> list[Feature] | None:
        """
        Replace the whole FilterSpec; both predicate forms are re-derived from scratch.
        """
        self.state.filters = spec
        self.state.compiled = compile_filter(spec)
        write_filters(self.state.url_params, spec)
        if not self.state.loaded:
            return None
        self._guarded("grid", self._apply_grid)
        return self._guarded("features", self._emit_features)

    def set_previews_enabled(self, enabled: bool) -> None:
        self.state.previews_enabled = bool(enabled)
        if self.state.loaded:
            self._guarded("previews", self._reconcile_previews)

    def select(self, feature_id: str | None) -> bool:
        before = self.selected_id
        if feature_id is None:
            self._guarded("selection", self.selection.deselect)
            moved = False
        else:
            moved = bool(self._guarded("selection", lambda: self.selection.select(feature_id)))
        if moved:
            self.state.programmatic_move = True
        self._selection_changed(before)
        return moved

    def deselect(self) -> None:
        self.select(None)

    def set_hovered(self, feature_id: str | None) -> None:
        before = self.hovered_id
        self._guarded("hover", lambda: self.selection.set_hovered(feature_id))
        if self.hovered_id != before:
            self._notify("hover", self.hovered_id)

    def restore_selection(self, feature_id: str | None) -> None:
        self.state.pending_selection = (feature_id or "").strip() or None

    def fit_search_bounds(self, bbox: BBox) -> None:
        """
        Camera fit for an external search result (not reported as a user move).
        """
        sel = self.catalog.selection
        self.state.programmatic_move = True
        self._guarded(
            "search",
            lambda: self.engine.fit_bounds(
                bbox, padding=sel.searchFitPadding, max_zoom=sel.searchFitMaxZoom
            ),
        )

    def set_basemap(self, name: str | None) -> list[str]:
        return self._guarded("basemap", lambda: set_basemap(self.engine, self.catalog, name)) or []

    # --- Stages ---------------------------------------------------------------------

    def _emit_features(self) -> list[Feature]:
        fragments = self.engine.query_source_features(
            FOOTPRINT_SOURCE, source_layer=self.catalog.source.sourceLayer
        )
        features = extract_visible_features(
            fragments,
            view=self.engine.viewport().bbox,
            evaluate=self.state.compiled.evaluate,
        )
        self.state.features = features
        self._notify("features", features)
        self._maybe_restore_selection(features)
        return features

    def _apply_grid(self) -> GridResult:
        vp = self.engine.viewport()
        grid = aggregate(
            self.engine.query_source_features(FOOTPRINT_SOURCE),
            zoom=vp.zoom,
            compiled=self.state.compiled,
            thresholds=self.thresholds,
        )
        self.state.grid = grid
        data = grid.to_geojson()
        current = self.engine.get_source(GRID_SOURCE)
        if current is not None and current.get("data") != data:
            self.engine.set_source_data(GRID_SOURCE, data)
        for layer_id in FOOTPRINT_LAYERS:
            if self.engine.has_layer(layer_id) and self.engine.get_filter(layer_id) != grid.footprint_predicate:
                self.engine.set_filter(layer_id, grid.footprint_predicate)
        return grid

    def _reconcile_previews(self) -> None:
        self.previews.reconcile(
            enabled=self.state.previews_enabled,
            zoom=self.engine.viewport().zoom,
            selected_id=self.selected_id,
        )

    def _maybe_restore_selection(self, features: list[Feature]) -> None:
        pending = self.state.pending_selection
        if pending is None or not features:
            return
        # One attempt, on the first non-empty list.
        self.state.pending_selection = None
        match = next((f for f in features if f.id == pending), None)
        if match is None:
            logger.info("selection %s from url not in view; dropped", pending)
            return
        self.select(match.id)

    # --- Internals ------------------------------------------------------------------

    def _selection_changed(self, before: str | None) -> None:
        after = self.selected_id
        if after == before:
            return
        write_selection(self.state.url_params, after)
        self._notify("selection", after)

    def _mirror_view(self) -> None:
        vp = self.engine.viewport()
        write_view(self.state.url_params, lon=vp.center_lon, lat=vp.center_lat, zoom=vp.zoom)

    def _guarded(self, stage: str, fn: Callable[[], T]) -> T | None:
        try:
            return fn()
        except Exception:
            logger.exception("%s stage failed (session=%s)", stage, self.id)
            return None

    def _record_idle_pass(self, stats: dict[str, Any]) -> None:
        try:
            log = get_pass_log()
            if log is None:
                return
            log.record(
                catalog=self.catalog.id,
                session_id=self.id,
                zoom=self.engine.viewport().zoom,
                stats=stats,
            )
        except Exception:
            logger.debug("telemetry write failed", exc_info=True)
