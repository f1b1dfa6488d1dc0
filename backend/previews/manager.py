from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import quote

from catalogs.types import CatalogPreviews
from engine.style import (
    FOOTPRINT_FILL_LAYER,
    FOOTPRINT_HOVER_LAYER,
    FOOTPRINT_SOURCE,
    RASTER_OPACITY,
    preview_feature_id,
    preview_layer_id,
)
from engine.types import MapEngine
from footprints.dedupe import merge_fragments
from geo.ops import bbox_corners

logger = logging.getLogger(__name__)

OPACITY_SELECTED = 1.0
OPACITY_OTHER_SELECTED = 0.3
OPACITY_NONE_SELECTED = 0.95


def opacity_for(feature_id: str, selected_id: str | None) -> float:
    if selected_id is None:
        return OPACITY_NONE_SELECTED
    return OPACITY_SELECTED if feature_id == selected_id else OPACITY_OTHER_SELECTED


def proxied_thumbnail(url: str, proxy_template: str | None) -> str:
    if not proxy_template:
        return url
    # Same escaping as JS encodeURIComponent.
    return proxy_template.replace("{url}", quote(url, safe="!~*'()"))


@dataclass(frozen=True)
class PreviewOverlay:
    feature_id: str
    # [[w, n], [e, n], [e, s], [w, s]]
    coordinates: list[list[float]]
    opacity: float
    url: str | None = None

    @property
    def layer_id(self) -> str:
        return preview_layer_id(self.feature_id)


@dataclass(frozen=True)
class PreviewPlan:
    add: list[PreviewOverlay] = field(default_factory=list)
    update: list[PreviewOverlay] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    # Eligible this pass, in first-rendered order (includes not-yet-placeable ids).
    eligible: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not (self.add or self.update or self.remove)


class PreviewLayerManager:
    """
    Keeps at most `maxPreviews` thumbnail overlays draped over rendered footprints.

    Only this class adds or removes `preview-*` layers and their image sources.
    """

    def __init__(self, engine: MapEngine, settings: CatalogPreviews) -> None:
        self.engine = engine
        self.settings = settings

    def live_ids(self) -> list[str]:
        out: list[str] = []
        for layer_id in self.engine.layer_ids():
            fid = preview_feature_id(layer_id)
            if fid is not None:
                out.append(fid)
        return out

    def eligible_thumbnails(self, *, enabled: bool, zoom: float) -> dict[str, str]:
        """
        First `maxPreviews` rendered footprints that have a thumbnail, in rendered order.
        """
        out: dict[str, str] = {}
        if not enabled or zoom < self.settings.minZoom:
            return out
        cap = int(self.settings.maxPreviews)
        for frag in self.engine.query_rendered_features([FOOTPRINT_FILL_LAYER]):
            fid = frag.feature_id
            thumb = frag.props.get("thumbnail")
            if fid is None or not thumb or fid in out:
                continue
            if len(out) >= cap:
                break
            out[fid] = str(thumb)
        return out

    def plan(self, *, enabled: bool, zoom: float, selected_id: str | None) -> PreviewPlan:
        thumbs = self.eligible_thumbnails(enabled=enabled, zoom=zoom)
        live = self.live_ids()
        live_set = set(live)

        remove = [fid for fid in live if fid not in thumbs]
        if not thumbs:
            return PreviewPlan(remove=remove)

        # Placement uses every loaded fragment, not just the clipped rendered ones.
        merged = merge_fragments(self.engine.query_source_features(FOOTPRINT_SOURCE))
        add: list[PreviewOverlay] = []
        update: list[PreviewOverlay] = []
        for fid, thumb in thumbs.items():
            m = merged.get(fid)
            if m is None or m.bbox is None:
                # Not loaded yet; try again on the next pass.
                continue
            coords = bbox_corners(m.bbox)
            if fid in live_set:
                update.append(
                    PreviewOverlay(
                        feature_id=fid,
                        coordinates=coords,
                        opacity=opacity_for(fid, selected_id),
                    )
                )
            else:
                add.append(
                    PreviewOverlay(
                        feature_id=fid,
                        coordinates=coords,
                        opacity=opacity_for(fid, selected_id),
                        url=proxied_thumbnail(thumb, self.settings.thumbnailProxy),
                    )
                )
        return PreviewPlan(add=add, update=update, remove=remove, eligible=list(thumbs))

    def apply(self, plan: PreviewPlan) -> None:
        for fid in plan.remove:
            self._remove(fid)

        for ov in plan.update:
            current = self.engine.get_source(ov.layer_id)
            if current is not None and current.get("coordinates") == ov.coordinates:
                continue
            self.engine.set_source_coordinates(ov.layer_id, ov.coordinates)

        for ov in plan.add:
            self.engine.add_source(
                ov.layer_id,
                {"type": "image", "url": ov.url, "coordinates": ov.coordinates},
            )
            self.engine.add_layer(
                {
                    "id": ov.layer_id,
                    "type": "raster",
                    "source": ov.layer_id,
                    "paint": {RASTER_OPACITY: ov.opacity, "raster-fade-duration": 0},
                },
                before_id=self._anchor(),
            )

        if not plan.is_noop:
            logger.debug(
                "previews: +%d ~%d -%d (live=%d)",
                len(plan.add),
                len(plan.update),
                len(plan.remove),
                len(self.live_ids()),
            )

    def reconcile(self, *, enabled: bool, zoom: float, selected_id: str | None) -> PreviewPlan:
        plan = self.plan(enabled=enabled, zoom=zoom, selected_id=selected_id)
        self.apply(plan)
        return plan

    def apply_opacities(self, selected_id: str | None) -> None:
        """
        Re-derive every live overlay's opacity and lift the selected one to the top
        of the preview stack.
        """
        for fid in self.live_ids():
            layer_id = preview_layer_id(fid)
            target = opacity_for(fid, selected_id)
            if self.engine.get_paint_property(layer_id, RASTER_OPACITY) != target:
                self.engine.set_paint_property(layer_id, RASTER_OPACITY, target)

        if selected_id is not None:
            layer_id = preview_layer_id(selected_id)
            if self.engine.has_layer(layer_id):
                self.engine.move_layer(layer_id, before_id=self._anchor())

    def clear(self) -> None:
        for fid in self.live_ids():
            self._remove(fid)

    def _remove(self, feature_id: str) -> None:
        layer_id = preview_layer_id(feature_id)
        if self.engine.has_layer(layer_id):
            self.engine.remove_layer(layer_id)
        if self.engine.get_source(layer_id) is not None:
            self.engine.remove_source(layer_id)

    def _anchor(self) -> str | None:
        return FOOTPRINT_HOVER_LAYER if self.engine.has_layer(FOOTPRINT_HOVER_LAYER) else None
