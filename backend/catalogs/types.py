from __future__ import annotations

from pydantic import BaseModel, Field

from lod.policy import LodThresholds


class CatalogCenter(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class CatalogDefaultView(BaseModel):
    center: CatalogCenter
    zoom: float = Field(ge=0.0, le=24.0)


class CatalogSource(BaseModel):
    """
    The tiled vector source holding image footprints.
    """

    url: str
    sourceLayer: str = "images"
    # Property that carries the stable image identity across tile fragments.
    idProperty: str = "_id"


class CatalogLod(BaseModel):
    largeImageKm2: float = Field(default=50.0, gt=0.0)
    hybridMinZoom: float = Field(default=8.0, ge=0.0, le=24.0)
    footprintMinZoom: float = Field(default=10.0, ge=0.0, le=24.0)
    gridZoomOffset: int = Field(default=4, ge=0, le=10)
    minGridZoom: int = Field(default=2, ge=0, le=24)
    maxGridZoom: int = Field(default=14, ge=0, le=24)

    def thresholds(self) -> LodThresholds:
        return LodThresholds(
            large_image_km2=self.largeImageKm2,
            hybrid_min_zoom=self.hybridMinZoom,
            footprint_min_zoom=self.footprintMinZoom,
            grid_zoom_offset=self.gridZoomOffset,
            min_grid_zoom=self.minGridZoom,
            max_grid_zoom=self.maxGridZoom,
        )


class CatalogPreviews(BaseModel):
    enabledByDefault: bool = True
    maxPreviews: int = Field(default=25, ge=0, le=500)
    minZoom: float = Field(default=8.0, ge=0.0, le=24.0)
    # Thumbnails are fetched through a CORS proxy; `{url}` is the url-encoded original.
    thumbnailProxy: str | None = "https://corsproxy.io/?{url}"


class CatalogSelection(BaseModel):
    fitPadding: int = Field(default=50, ge=0)
    fitMaxZoom: float = Field(default=18.0, ge=0.0, le=24.0)
    fitDurationMs: int = Field(default=1500, ge=0)
    cellFitPadding: int = Field(default=20, ge=0)
    # Camera fit for an external (address search) result.
    searchFitPadding: int = Field(default=50, ge=0)
    searchFitMaxZoom: float = Field(default=14.0, ge=0.0, le=24.0)


class CatalogFullResolution(BaseModel):
    minZoom: float = Field(default=14.0, ge=0.0, le=24.0)
    tileSize: int = 256
    sourceMinZoom: int = 12
    sourceMaxZoom: int = 22
    # Built from the storage identifier when an image has no explicit tile template.
    fallbackTemplate: str = "https://tiles.openaerialmap.org/{upload_id}/0/{filename}/{z}/{x}/{y}"
    # Tiles under this prefix redirect without CORS headers; they are rewritten to the tiler.
    redirectPrefix: str | None = "https://tiles.openaerialmap.org/"
    cogUrlTemplate: str = "https://oin-hotosm-temp.s3.us-east-1.amazonaws.com/{path}.tif"
    tilerTemplate: str = (
        "https://titiler.hotosm.org/cog/tiles/WebMercatorQuad/{z}/{x}/{y}@1x?url={url}"
    )


class CatalogConfig(BaseModel):
    id: str
    title: str
    enabled: bool = True
    source: CatalogSource
    defaultView: CatalogDefaultView
    lod: CatalogLod = Field(default_factory=CatalogLod)
    previews: CatalogPreviews = Field(default_factory=CatalogPreviews)
    selection: CatalogSelection = Field(default_factory=CatalogSelection)
    fullResolution: CatalogFullResolution = Field(default_factory=CatalogFullResolution)
    # "Viewport settled" debounce.
    settleMs: int = Field(default=500, ge=0, le=10_000)
    # Basemap name -> raster tile urls.
    basemaps: dict[str, list[str]] = Field(default_factory=dict)
    defaultBasemap: str | None = None

    def basemap_tiles(self, name: str | None) -> list[str]:
        """
        Tile urls for a basemap name; unknown names fall back to the default basemap.
        """
        key = (name or "").strip().lower()
        if key in self.basemaps:
            return list(self.basemaps[key])
        if self.defaultBasemap and self.defaultBasemap in self.basemaps:
            return list(self.basemaps[self.defaultBasemap])
        return []
