from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from catalogs.types import CatalogFullResolution, CatalogSelection
from engine.style import (
    FOOTPRINT_FILL_LAYER,
    FOOTPRINT_HIGHLIGHT_LAYER,
    FOOTPRINT_HOVER_LAYER,
    FOOTPRINT_SOURCE,
    FULLRES_LAYER,
    FULLRES_SOURCE,
    GRID_FILL_LAYER,
    RASTER_OPACITY,
    footprint_opacities,
)
from engine.types import MapEngine
from filters.expression import Expression, id_equals, match_no_highlight
from footprints.dedupe import feature_from_fragment, full_bbox
from footprints.types import Feature, FullBBox
from geo.aoi import BBox
from geo.ops import GeometryError, geometry_bbox
from previews.manager import PreviewLayerManager
from selection.fullres import resolve_tms_url

logger = logging.getLogger(__name__)

ClickKind = Literal["selected", "deselected", "fit_cell", "disambiguate"]


@dataclass(frozen=True)
class ClickOutcome:
    kind: ClickKind
    feature_id: str | None = None
    # Footprints stacked under the click, for the caller to pick from.
    candidates: list[Feature] = field(default_factory=list)
    # Camera target for "fit_cell".
    bbox: BBox | None = None
    # A selection camera fit was issued.
    moved: bool = False


@dataclass
class SelectionState:
    selected_id: str | None = None
    selected_feature: Feature | None = None
    hovered_id: str | None = None
    # Selection whose camera fit waits for its fragments to load.
    pending_fit_id: str | None = None


def _as_int(v: Any) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return 0


def _as_float(v: Any) -> float | None:
    try:
        return None if v is None else float(v)
    except (TypeError, ValueError):
        return None


def _cell_bounds(props: dict[str, Any], geometry: dict[str, Any] | None) -> BBox | None:
    edges = [_as_float(props.get(k)) for k in ("bboxW", "bboxS", "bboxE", "bboxN")]
    if all(e is not None for e in edges):
        return BBox.from_sequence(edges)  # type: ignore[arg-type]
    try:
        return geometry_bbox(geometry)
    except GeometryError:
        return None


class SelectionController:
    """
    Unselected <-> Selected(id).

    Owns the highlight/hover filters, the footprint opacities and the full-resolution
    overlay. Preview opacities are delegated to the preview manager.
    """

    def __init__(
        self,
        engine: MapEngine,
        *,
        selection: CatalogSelection,
        fullres: CatalogFullResolution,
        previews: PreviewLayerManager,
    ) -> None:
        self.engine = engine
        self.selection = selection
        self.fullres = fullres
        self.previews = previews
        self.state = SelectionState()

    @property
    def selected_id(self) -> str | None:
        return self.state.selected_id

    @property
    def hovered_id(self) -> str | None:
        return self.state.hovered_id

    # --- Geometry -------------------------------------------------------------------

    def full_bbox(self, feature_id: str) -> FullBBox | None:
        return full_bbox(self.engine.query_source_features(FOOTPRINT_SOURCE), feature_id)

    def resolve_feature(self, feature_id: str) -> Feature | None:
        """
        Canonical feature with its geometry replaced by the seam-free full bbox.
        """
        full = self.full_bbox(feature_id)
        if full is None:
            return None
        return feature_from_fragment(full.fragment).with_bbox_geometry(full.bbox)

    # --- Pointer events -------------------------------------------------------------

    def handle_click(self, lng_lat: tuple[float, float]) -> ClickOutcome:
        hits = self.engine.query_rendered_features([FOOTPRINT_FILL_LAYER], at=lng_lat)
        unique: dict[str, Feature] = {}
        for frag in hits:
            fid = frag.feature_id
            if fid is None or fid in unique:
                continue
            full = self.full_bbox(fid)
            feature = feature_from_fragment(frag)
            unique[fid] = feature.with_bbox_geometry(full.bbox) if full else feature

        if len(unique) == 1:
            feature = next(iter(unique.values()))
            moved = self.select(feature)
            return ClickOutcome(kind="selected", feature_id=feature.id, moved=moved)
        if len(unique) > 1:
            return ClickOutcome(kind="disambiguate", candidates=list(unique.values()))

        cells = self.engine.query_rendered_features([GRID_FILL_LAYER], at=lng_lat)
        if cells and _as_int(cells[0].props.get("count")) > 0:
            props = cells[0].props
            single = props.get("singleId")
            if _as_int(props.get("count")) == 1 and single:
                feature = self.resolve_feature(str(single))
                if feature is not None:
                    moved = self.select(feature)
                    return ClickOutcome(kind="selected", feature_id=feature.id, moved=moved)
            bounds = _cell_bounds(props, cells[0].geometry)
            if bounds is not None:
                self.engine.fit_bounds(bounds, padding=self.selection.cellFitPadding)
                return ClickOutcome(kind="fit_cell", bbox=bounds)

        self.deselect()
        return ClickOutcome(kind="deselected")

    def handle_mouse_move(self, lng_lat: tuple[float, float]) -> str | None:
        if self.state.selected_id is None:
            self.set_hovered(None)
            return None
        hits = self.engine.query_rendered_features([FOOTPRINT_FILL_LAYER], at=lng_lat)
        hovered = hits[0].feature_id if hits else None
        self.set_hovered(hovered)
        return hovered

    def set_hovered(self, feature_id: str | None) -> None:
        self.state.hovered_id = feature_id
        self._apply_hover_filter()

    # --- Transitions ----------------------------------------------------------------

    def select(self, target: Feature | str) -> bool:
        """
        Enter Selected(id). Returns True when a camera move was issued.
        """
        if isinstance(target, Feature):
            fid = target.id
            feature: Feature | None = target
        else:
            fid = str(target)
            feature = self.resolve_feature(fid)

        self.state.selected_id = fid
        self.state.selected_feature = feature
        self.state.pending_fit_id = fid

        self._set_filter(FOOTPRINT_HIGHLIGHT_LAYER, id_equals(fid))
        moved = self._fit_pending()
        self._apply_footprint_opacities()
        self.previews.apply_opacities(fid)
        self.refresh_full_resolution()
        self._apply_hover_filter()
        return moved

    def deselect(self) -> None:
        self.state.selected_id = None
        self.state.selected_feature = None
        self.state.pending_fit_id = None

        self._set_filter(FOOTPRINT_HIGHLIGHT_LAYER, match_no_highlight())
        self._apply_footprint_opacities()
        self.previews.apply_opacities(None)
        self.remove_full_resolution()
        self._apply_hover_filter()

    def on_idle(self) -> bool:
        """
        Retry work deferred until tiles load. Returns True when a camera move was issued.
        """
        moved = False
        if self.state.selected_id is not None:
            if self.state.selected_feature is None:
                self.state.selected_feature = self.resolve_feature(self.state.selected_id)
            moved = self._fit_pending()
        self.refresh_full_resolution()
        return moved

    # --- Full-resolution overlay ----------------------------------------------------

    def refresh_full_resolution(self) -> None:
        fid = self.state.selected_id
        if fid is None or self.engine.viewport().zoom < self.fullres.minZoom:
            self.remove_full_resolution()
            return

        props = self._selected_props()
        url = resolve_tms_url(props, self.fullres) if props is not None else None
        if url is None:
            self.remove_full_resolution()
            return

        existing = self.engine.get_source(FULLRES_SOURCE)
        if existing is not None:
            tiles = existing.get("tiles") or []
            if tiles and tiles[0] == url:
                return
            self.remove_full_resolution()

        self.engine.add_source(
            FULLRES_SOURCE,
            {
                "type": "raster",
                "tiles": [url],
                "tileSize": self.fullres.tileSize,
                "minzoom": self.fullres.sourceMinZoom,
                "maxzoom": self.fullres.sourceMaxZoom,
            },
        )
        before = FOOTPRINT_HOVER_LAYER if self.engine.has_layer(FOOTPRINT_HOVER_LAYER) else None
        self.engine.add_layer(
            {
                "id": FULLRES_LAYER,
                "type": "raster",
                "source": FULLRES_SOURCE,
                "paint": {RASTER_OPACITY: 1.0},
            },
            before_id=before,
        )
        logger.info("full-resolution overlay for %s", fid)

    def remove_full_resolution(self) -> None:
        if self.engine.has_layer(FULLRES_LAYER):
            self.engine.remove_layer(FULLRES_LAYER)
        if self.engine.get_source(FULLRES_SOURCE) is not None:
            self.engine.remove_source(FULLRES_SOURCE)

    # --- Internals ------------------------------------------------------------------

    def _selected_props(self) -> dict[str, Any] | None:
        feature = self.state.selected_feature
        if feature is not None:
            return feature.attributes.as_properties()
        full = self.full_bbox(self.state.selected_id or "")
        return None if full is None else full.fragment.props

    def _fit_pending(self) -> bool:
        fid = self.state.pending_fit_id
        if fid is None:
            return False
        full = self.full_bbox(fid)
        if full is None:
            logger.debug("selection %s not loaded yet; camera fit deferred", fid)
            return False
        self.state.pending_fit_id = None
        self.engine.fit_bounds(
            full.bbox,
            padding=self.selection.fitPadding,
            max_zoom=self.selection.fitMaxZoom,
            duration_ms=self.selection.fitDurationMs,
        )
        return True

    def _apply_footprint_opacities(self) -> None:
        targets = footprint_opacities(self.state.selected_id is not None)
        for layer_id, (name, value) in targets.items():
            if not self.engine.has_layer(layer_id):
                continue
            if self.engine.get_paint_property(layer_id, name) != value:
                self.engine.set_paint_property(layer_id, name, value)

    def _apply_hover_filter(self) -> None:
        selected = self.state.selected_id
        hovered = self.state.hovered_id
        if selected is not None and hovered is not None and hovered != selected:
            self._set_filter(FOOTPRINT_HOVER_LAYER, id_equals(hovered))
        else:
            self._set_filter(FOOTPRINT_HOVER_LAYER, match_no_highlight())

    def _set_filter(self, layer_id: str, expression: Expression | None) -> None:
        if not self.engine.has_layer(layer_id):
            return
        if self.engine.get_filter(layer_id) != expression:
            self.engine.set_filter(layer_id, expression)
