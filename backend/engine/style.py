from __future__ import annotations

from typing import Any

from catalogs.types import CatalogConfig
from engine.types import MapEngine
from filters.expression import match_no_highlight

FOOTPRINT_SOURCE = "oam-tiles"
GRID_SOURCE = "oam-grid"
BASEMAP_SOURCE = "basemap-source"

BASEMAP_LAYER = "basemap-layer"
GRID_FILL_LAYER = "grid-fill"
GRID_COUNT_LAYER = "grid-count"
FOOTPRINT_FILL_LAYER = "footprint-fill"
FOOTPRINT_LINE_LAYER = "footprint-line"
FOOTPRINT_HOVER_LAYER = "footprint-hover"
FOOTPRINT_HIGHLIGHT_LAYER = "footprint-highlight"

# Layers whose filter follows the user FilterSpec / LOD band.
FOOTPRINT_LAYERS = (FOOTPRINT_FILL_LAYER, FOOTPRINT_LINE_LAYER)

PREVIEW_PREFIX = "preview-"
FULLRES_SOURCE = "tms-fullres"
FULLRES_LAYER = "tms-fullres-layer"

FILL_OPACITY = "fill-opacity"
LINE_OPACITY = "line-opacity"
RASTER_OPACITY = "raster-opacity"

DEFAULT_FILL_OPACITY = 0.1
DEFAULT_LINE_OPACITY = 0.8
SELECTED_FILL_OPACITY = 0.0
SELECTED_LINE_OPACITY = 0.15


def preview_layer_id(feature_id: str) -> str:
    return f"{PREVIEW_PREFIX}{feature_id}"


def preview_feature_id(layer_id: str) -> str | None:
    if not layer_id.startswith(PREVIEW_PREFIX):
        return None
    return layer_id[len(PREVIEW_PREFIX) :]


def footprint_opacities(selected: bool) -> dict[str, tuple[str, float]]:
    """
    Footprint layer id -> (paint property, opacity).
    """
    if selected:
        return {
            FOOTPRINT_FILL_LAYER: (FILL_OPACITY, SELECTED_FILL_OPACITY),
            FOOTPRINT_LINE_LAYER: (LINE_OPACITY, SELECTED_LINE_OPACITY),
        }
    return {
        FOOTPRINT_FILL_LAYER: (FILL_OPACITY, DEFAULT_FILL_OPACITY),
        FOOTPRINT_LINE_LAYER: (LINE_OPACITY, DEFAULT_LINE_OPACITY),
    }


def base_sources(catalog: CatalogConfig) -> dict[str, dict[str, Any]]:
    sources: dict[str, dict[str, Any]] = {}
    tiles = catalog.basemap_tiles(catalog.defaultBasemap)
    if tiles:
        sources[BASEMAP_SOURCE] = {"type": "raster", "tiles": tiles, "tileSize": 256}
    sources[FOOTPRINT_SOURCE] = {
        "type": "vector",
        "url": catalog.source.url,
        "promoteId": catalog.source.idProperty,
    }
    sources[GRID_SOURCE] = {
        "type": "geojson",
        "data": {"type": "FeatureCollection", "features": []},
    }
    return sources


def base_layers(catalog: CatalogConfig) -> list[dict[str, Any]]:
    """
    Layer stack, bottom to top. Previews and the full-res overlay are inserted
    below the hover layer at runtime.
    """
    lod = catalog.lod
    source_layer = catalog.source.sourceLayer
    layers: list[dict[str, Any]] = []
    if catalog.basemap_tiles(catalog.defaultBasemap):
        layers.append({"id": BASEMAP_LAYER, "type": "raster", "source": BASEMAP_SOURCE})
    layers += [
        {
            "id": GRID_FILL_LAYER,
            "type": "fill",
            "source": GRID_SOURCE,
            "maxzoom": lod.footprintMinZoom,
            "paint": {
                "fill-color": [
                    "interpolate",
                    ["linear"],
                    ["get", "count"],
                    1,
                    "#cceeff",
                    5,
                    "#66b3ff",
                    20,
                    "#0066cc",
                    50,
                    "#003366",
                ],
                FILL_OPACITY: 0.65,
            },
        },
        {
            "id": GRID_COUNT_LAYER,
            "type": "symbol",
            "source": GRID_SOURCE,
            "maxzoom": lod.footprintMinZoom,
            "filter": [">", ["get", "count"], 0],
            "layout": {"text-field": "{count}", "text-size": 12},
            "paint": {"text-color": "#003366"},
        },
        {
            "id": FOOTPRINT_FILL_LAYER,
            "type": "fill",
            "source": FOOTPRINT_SOURCE,
            "source-layer": source_layer,
            "minzoom": lod.hybridMinZoom,
            "paint": {"fill-color": "#00E5FF", FILL_OPACITY: DEFAULT_FILL_OPACITY},
        },
        {
            "id": FOOTPRINT_LINE_LAYER,
            "type": "line",
            "source": FOOTPRINT_SOURCE,
            "source-layer": source_layer,
            "minzoom": lod.hybridMinZoom,
            "paint": {"line-color": "#00B0FF", "line-width": 2, LINE_OPACITY: DEFAULT_LINE_OPACITY},
        },
        {
            "id": FOOTPRINT_HOVER_LAYER,
            "type": "line",
            "source": FOOTPRINT_SOURCE,
            "source-layer": source_layer,
            "filter": match_no_highlight(),
            "paint": {"line-color": "#2196F3", "line-width": 3, LINE_OPACITY: 0.9},
        },
        {
            "id": FOOTPRINT_HIGHLIGHT_LAYER,
            "type": "line",
            "source": FOOTPRINT_SOURCE,
            "source-layer": source_layer,
            "filter": match_no_highlight(),
            "paint": {"line-color": "#FF0000", "line-width": 3},
        },
    ]
    return layers


def install_base_style(engine: MapEngine, catalog: CatalogConfig) -> None:
    for source_id, spec in base_sources(catalog).items():
        if engine.get_source(source_id) is None:
            engine.add_source(source_id, spec)
    for layer in base_layers(catalog):
        if not engine.has_layer(layer["id"]):
            engine.add_layer(layer)


def set_basemap(engine: MapEngine, catalog: CatalogConfig, name: str | None) -> list[str]:
    """
    Swap basemap tiles in place (remove-then-add inside one command batch).
    """
    tiles = catalog.basemap_tiles(name)
    if not tiles:
        return []
    if engine.has_layer(BASEMAP_LAYER):
        engine.remove_layer(BASEMAP_LAYER)
    if engine.get_source(BASEMAP_SOURCE) is not None:
        engine.remove_source(BASEMAP_SOURCE)
    engine.add_source(BASEMAP_SOURCE, {"type": "raster", "tiles": tiles, "tileSize": 256})
    layer_ids = engine.layer_ids()
    before = layer_ids[0] if layer_ids else None
    engine.add_layer({"id": BASEMAP_LAYER, "type": "raster", "source": BASEMAP_SOURCE}, before_id=before)
    return tiles
