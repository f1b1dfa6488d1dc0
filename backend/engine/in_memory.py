from __future__ import annotations

import copy
from typing import Any

from engine.types import MapEngine, Viewport
from filters.expression import Expression, evaluate
from footprints.types import Fragment
from geo.aoi import BBox
from geo.index import FragmentIndex, build_fragment_index
from geo.view import fit_camera, viewport_bbox

# Sources whose features can be queried and hit-tested.
_FEATURE_SOURCE_TYPES = ("vector", "geojson")


class StyleError(ValueError):
    pass


def default_viewport(*, width: int = 900, height: int = 600) -> Viewport:
    return make_viewport(0.0, 20.0, 2.0, width=width, height=height)


def make_viewport(
    center_lon: float,
    center_lat: float,
    zoom: float,
    *,
    bbox: BBox | None = None,
    width: int = 900,
    height: int = 600,
) -> Viewport:
    if bbox is None:
        bbox = viewport_bbox(center_lon, center_lat, zoom, width=width, height=height)
    return Viewport(
        center_lon=float(center_lon),
        center_lat=float(center_lat),
        zoom=float(zoom),
        bbox=bbox,
        width=int(width),
        height=int(height),
    )


class InMemoryMapEngine(MapEngine):
    """
    Mirror of the browser map's style and loaded tile data.

    The real rendering engine lives in the client. This keeps the same state on the
    server side (layers, sources, filters, paint, camera, loaded fragments), answers
    queries against it, and records every style mutation as a command so the client
    can replay one ordered batch per event.
    """

    def __init__(self, viewport: Viewport | None = None) -> None:
        self._viewport = viewport or default_viewport()
        self._layers: list[dict[str, Any]] = []
        self._sources: dict[str, dict[str, Any]] = {}
        # Loaded tile fragments per vector source.
        self._fragments: dict[str, list[Fragment]] = {}
        self._indexes: dict[str, FragmentIndex] = {}
        self.commands: list[dict[str, Any]] = []

    # --- Host-side sync (not style mutations) ---------------------------------------

    def set_viewport(self, viewport: Viewport) -> None:
        self._viewport = viewport

    def load_fragments(self, source_id: str, fragments: list[Fragment]) -> None:
        """
        Replace the fragments currently loaded for a vector source.
        """
        self._fragments[source_id] = list(fragments)
        self._indexes.pop(source_id, None)

    def drain_commands(self) -> list[dict[str, Any]]:
        out = self.commands
        self.commands = []
        return out

    # --- Queries --------------------------------------------------------------------

    def viewport(self) -> Viewport:
        return self._viewport

    def query_source_features(
        self, source: str, *, source_layer: str | None = None
    ) -> list[Fragment]:
        return list(self._source_fragments(source))

    def query_rendered_features(
        self, layers: list[str], *, at: tuple[float, float] | None = None
    ) -> list[Fragment]:
        """
        Features drawn by `layers` at a point (or anywhere in view), topmost layer first.

        A feature is drawn when its layer is visible at the current zoom and the layer's
        filter accepts it. Tile duplicates are returned as-is.
        """
        wanted = set(layers)
        zoom = self._viewport.zoom
        out: list[Fragment] = []
        for layer in reversed(self._layers):
            if layer["id"] not in wanted or not _visible_at(layer, zoom):
                continue
            source_id = layer.get("source")
            source = self._sources.get(source_id or "")
            if source is None or source.get("type") not in _FEATURE_SOURCE_TYPES:
                continue
            fragments = self._source_fragments(source_id)
            index = self._index_for(source_id)
            if at is not None:
                positions = index.at_point(at[0], at[1])
            else:
                positions = index.in_bbox(self._viewport.bbox)
            flt = layer.get("filter")
            for pos in positions:
                frag = fragments[pos]
                if evaluate(flt, frag.props):
                    out.append(frag)
        return out

    def has_layer(self, layer_id: str) -> bool:
        return self._layer_pos(layer_id) is not None

    def layer_ids(self) -> list[str]:
        return [layer["id"] for layer in self._layers]

    def get_layer(self, layer_id: str) -> dict[str, Any] | None:
        pos = self._layer_pos(layer_id)
        return None if pos is None else copy.deepcopy(self._layers[pos])

    def get_source(self, source_id: str) -> dict[str, Any] | None:
        spec = self._sources.get(source_id)
        return None if spec is None else copy.deepcopy(spec)

    def get_filter(self, layer_id: str) -> Expression | None:
        layer = self._require_layer(layer_id)
        flt = layer.get("filter")
        return None if flt is None else copy.deepcopy(flt)

    def get_paint_property(self, layer_id: str, name: str) -> Any:
        layer = self._require_layer(layer_id)
        return (layer.get("paint") or {}).get(name)

    # --- Style mutations ------------------------------------------------------------

    def add_source(self, source_id: str, spec: dict[str, Any]) -> None:
        if source_id in self._sources:
            raise StyleError(f"source already exists: {source_id}")
        self._sources[source_id] = copy.deepcopy(spec)
        self._indexes.pop(source_id, None)
        self._record("addSource", id=source_id, source=spec)

    def remove_source(self, source_id: str) -> None:
        if source_id not in self._sources:
            raise StyleError(f"no such source: {source_id}")
        users = [layer["id"] for layer in self._layers if layer.get("source") == source_id]
        if users:
            raise StyleError(f"source {source_id} is still used by layers: {users}")
        del self._sources[source_id]
        self._indexes.pop(source_id, None)
        self._record("removeSource", id=source_id)

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None:
        spec = self._sources.get(source_id)
        if spec is None or spec.get("type") != "geojson":
            raise StyleError(f"not a geojson source: {source_id}")
        spec["data"] = copy.deepcopy(data)
        self._indexes.pop(source_id, None)
        self._record("setData", id=source_id, data=data)

    def set_source_coordinates(self, source_id: str, coordinates: list[list[float]]) -> None:
        spec = self._sources.get(source_id)
        if spec is None or spec.get("type") != "image":
            raise StyleError(f"not an image source: {source_id}")
        spec["coordinates"] = copy.deepcopy(coordinates)
        self._record("setCoordinates", id=source_id, coordinates=coordinates)

    def add_layer(self, spec: dict[str, Any], *, before_id: str | None = None) -> None:
        layer_id = spec.get("id")
        if not layer_id:
            raise StyleError("layer spec is missing `id`")
        if self.has_layer(layer_id):
            raise StyleError(f"layer already exists: {layer_id}")
        src = spec.get("source")
        if src is not None and src not in self._sources:
            raise StyleError(f"layer {layer_id} references missing source: {src}")
        layer = copy.deepcopy(spec)
        pos = self._layer_pos(before_id) if before_id else None
        if pos is None:
            self._layers.append(layer)
        else:
            self._layers.insert(pos, layer)
        self._record("addLayer", layer=spec, beforeId=before_id)

    def remove_layer(self, layer_id: str) -> None:
        pos = self._layer_pos(layer_id)
        if pos is None:
            raise StyleError(f"no such layer: {layer_id}")
        del self._layers[pos]
        self._record("removeLayer", id=layer_id)

    def move_layer(self, layer_id: str, *, before_id: str | None = None) -> None:
        pos = self._layer_pos(layer_id)
        if pos is None:
            raise StyleError(f"no such layer: {layer_id}")
        if before_id == layer_id:
            return
        layer = self._layers.pop(pos)
        target = self._layer_pos(before_id) if before_id else None
        if target is None:
            self._layers.append(layer)
        else:
            self._layers.insert(target, layer)
        self._record("moveLayer", id=layer_id, beforeId=before_id)

    def set_filter(self, layer_id: str, expression: Expression | None) -> None:
        layer = self._require_layer(layer_id)
        if expression is None:
            layer.pop("filter", None)
        else:
            layer["filter"] = copy.deepcopy(expression)
        self._record("setFilter", id=layer_id, filter=expression)

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None:
        layer = self._require_layer(layer_id)
        layer.setdefault("paint", {})[name] = value
        self._record("setPaintProperty", id=layer_id, name=name, value=value)

    def fit_bounds(
        self,
        bbox: BBox,
        *,
        padding: int = 0,
        max_zoom: float | None = None,
        duration_ms: int | None = None,
    ) -> None:
        vp = self._viewport
        cam = fit_camera(bbox, width=vp.width, height=vp.height, padding=padding, max_zoom=max_zoom)
        self._viewport = make_viewport(
            cam.center_lon, cam.center_lat, cam.zoom, width=vp.width, height=vp.height
        )
        cmd: dict[str, Any] = {"bbox": bbox.as_list(), "padding": int(padding)}
        if max_zoom is not None:
            cmd["maxZoom"] = float(max_zoom)
        if duration_ms is not None:
            cmd["duration"] = int(duration_ms)
        self._record("fitBounds", **cmd)

    # --- Internals ------------------------------------------------------------------

    def _record(self, op: str, **payload: Any) -> None:
        self.commands.append({"op": op, **copy.deepcopy(payload)})

    def _layer_pos(self, layer_id: str | None) -> int | None:
        if layer_id is None:
            return None
        for i, layer in enumerate(self._layers):
            if layer["id"] == layer_id:
                return i
        return None

    def _require_layer(self, layer_id: str) -> dict[str, Any]:
        pos = self._layer_pos(layer_id)
        if pos is None:
            raise StyleError(f"no such layer: {layer_id}")
        return self._layers[pos]

    def _source_fragments(self, source_id: str) -> list[Fragment]:
        spec = self._sources.get(source_id)
        if spec is not None and spec.get("type") == "geojson":
            data = spec.get("data") or {}
            return [Fragment.from_geojson(f) for f in data.get("features") or []]
        return self._fragments.get(source_id, [])

    def _index_for(self, source_id: str) -> FragmentIndex:
        idx = self._indexes.get(source_id)
        if idx is None:
            idx = build_fragment_index(self._source_fragments(source_id))
            self._indexes[source_id] = idx
        return idx


def _visible_at(layer: dict[str, Any], zoom: float) -> bool:
    minzoom = layer.get("minzoom")
    maxzoom = layer.get("maxzoom")
    if minzoom is not None and zoom < float(minzoom):
        return False
    if maxzoom is not None and zoom >= float(maxzoom):
        return False
    return True
