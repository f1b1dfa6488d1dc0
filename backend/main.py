from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.sessions import (
    SessionNotFound,
    dispatch_event,
    get_registry,
    selected_payload,
    session_payload,
    state_payload,
    sync_engine,
    viewport_from_request,
)
from catalogs.registry import list_catalogs
from engine.types import MapEvent
from filters.types import FilterSpec
from geo.aoi import BBox
from telemetry.config import cors_origins, json_logs_enabled, log_level
from telemetry.logging_config import configure_logging
from telemetry.store import get_pass_log

configure_logging(level=log_level(), json_logs=json_logs_enabled())
logger = logging.getLogger(__name__)

app = FastAPI(title="Footprint explorer")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SessionNotFound)
def _session_not_found(_request: Request, exc: SessionNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": f"Unknown session: {exc.args[0]}"})


class ApiEventType(str, Enum):
    load = "load"
    idle = "idle"
    movestart = "movestart"
    moveend = "moveend"
    click = "click"
    mousemove = "mousemove"


class ApiBBox(BaseModel):
    minLon: float
    minLat: float
    maxLon: float
    maxLat: float

    def to_bbox(self) -> BBox:
        return BBox(
            min_lon=self.minLon, min_lat=self.minLat, max_lon=self.maxLon, max_lat=self.maxLat
        ).normalized()


class ApiCenter(BaseModel):
    lat: float
    lon: float


class ApiLngLat(BaseModel):
    lon: float
    lat: float


class ApiView(BaseModel):
    center: ApiCenter
    zoom: float


class ApiViewportSize(BaseModel):
    width: int = Field(default=900, ge=1)
    height: int = Field(default=600, ge=1)


class ApiCreateSession(BaseModel):
    catalogId: str | None = None
    # Page query string (lat, lon, zoom, filters, selected_id).
    query: str | None = None
    viewport: ApiViewportSize | None = None


class ApiEvent(BaseModel):
    type: ApiEventType
    lngLat: ApiLngLat | None = None
    view: ApiView | None = None
    bbox: ApiBBox | None = None
    viewport: ApiViewportSize | None = None
    # Footprint fragments currently loaded in the client's vector source (GeoJSON features).
    fragments: list[dict[str, Any]] | None = None


class ApiFilters(BaseModel):
    dateStart: str = ""
    dateEnd: str = ""
    platform: str = ""
    license: str = ""


class ApiPreviews(BaseModel):
    enabled: bool


class ApiSelect(BaseModel):
    featureId: str | None = None


class ApiHover(BaseModel):
    featureId: str | None = None


class ApiSearchFit(BaseModel):
    bbox: ApiBBox


class ApiBasemap(BaseModel):
    name: str


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/catalogs")
def get_catalogs():
    return [
        {
            "id": c.id,
            "title": c.title,
            "defaultView": c.defaultView.model_dump(),
            "basemaps": sorted(c.basemaps.keys()),
            "defaultBasemap": c.defaultBasemap,
        }
        for c in list_catalogs()
    ]


@app.post("/sessions")
def create_session(body: ApiCreateSession):
    size = body.viewport or ApiViewportSize()
    try:
        handle = get_registry().create(
            catalog_id=body.catalogId, query=body.query, width=size.width, height=size.height
        )
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    with handle.lock:
        return session_payload(handle)


@app.post("/sessions/{session_id}/events")
def post_event(session_id: str, body: ApiEvent):
    handle = get_registry().get(session_id)
    with handle.lock:
        viewport = None
        if body.view is not None:
            viewport = viewport_from_request(
                lon=body.view.center.lon,
                lat=body.view.center.lat,
                zoom=body.view.zoom,
                bbox=body.bbox.to_bbox() if body.bbox is not None else None,
                width=body.viewport.width if body.viewport is not None else None,
                height=body.viewport.height if body.viewport is not None else None,
                current=handle.engine.viewport(),
            )
        sync_engine(handle, viewport=viewport, fragments=body.fragments)
        lng_lat = (body.lngLat.lon, body.lngLat.lat) if body.lngLat is not None else None
        if body.type in (ApiEventType.click, ApiEventType.mousemove) and lng_lat is None:
            raise HTTPException(status_code=400, detail=f"`lngLat` is required for {body.type.value}")
        return dispatch_event(handle, MapEvent(type=body.type.value, lng_lat=lng_lat))


@app.put("/sessions/{session_id}/filters")
def put_filters(session_id: str, body: ApiFilters):
    handle = get_registry().get(session_id)
    with handle.lock:
        features = handle.session.set_filters(FilterSpec.from_mapping(body.model_dump()))
        out = session_payload(handle)
        out["features"] = [f.to_geojson() for f in features] if features is not None else None
        return out


@app.put("/sessions/{session_id}/previews")
def put_previews(session_id: str, body: ApiPreviews):
    handle = get_registry().get(session_id)
    with handle.lock:
        handle.session.set_previews_enabled(body.enabled)
        return session_payload(handle)


@app.post("/sessions/{session_id}/select")
def post_select(session_id: str, body: ApiSelect):
    handle = get_registry().get(session_id)
    with handle.lock:
        moved = handle.session.select(body.featureId)
        out = session_payload(handle)
        out["moved"] = moved
        out["selected"] = selected_payload(handle.session)
        return out


@app.put("/sessions/{session_id}/hover")
def put_hover(session_id: str, body: ApiHover):
    handle = get_registry().get(session_id)
    with handle.lock:
        handle.session.set_hovered(body.featureId)
        return session_payload(handle)


@app.post("/sessions/{session_id}/search-fit")
def post_search_fit(session_id: str, body: ApiSearchFit):
    handle = get_registry().get(session_id)
    with handle.lock:
        handle.session.fit_search_bounds(body.bbox.to_bbox())
        return session_payload(handle)


@app.put("/sessions/{session_id}/basemap")
def put_basemap(session_id: str, body: ApiBasemap):
    handle = get_registry().get(session_id)
    with handle.lock:
        tiles = handle.session.set_basemap(body.name)
        out = session_payload(handle)
        out["tiles"] = tiles
        return out


@app.get("/sessions/{session_id}/state")
def get_state(session_id: str):
    handle = get_registry().get(session_id)
    with handle.lock:
        handle.session.poll_settle()
        return state_payload(handle)


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str):
    if not get_registry().drop(session_id):
        raise SessionNotFound(session_id)
    logger.info("dropped session %s", session_id)
    return {"deleted": session_id}


@app.get("/telemetry/summary")
def telemetry_summary(catalog: str | None = None):
    log = get_pass_log()
    if log is None:
        return {"enabled": False, "summary": []}
    return {"enabled": True, "summary": log.summary(catalog=catalog)}
