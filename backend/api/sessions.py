from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from catalogs.registry import get_catalog
from engine.in_memory import InMemoryMapEngine, make_viewport
from engine.session import EventResult, ExplorerSession, SettleInfo
from engine.style import FOOTPRINT_SOURCE
from engine.types import MapEvent, Viewport
from footprints.types import Feature, Fragment
from geo.aoi import BBox
from selection.controller import ClickOutcome
from selection.fullres import editor_links
from state.url import read_view_state

logger = logging.getLogger(__name__)

MAX_SESSIONS = 256


class SessionNotFound(KeyError):
    pass


@dataclass
class SessionHandle:
    session: ExplorerSession
    engine: InMemoryMapEngine
    # Event handlers are not reentrant; one request per session at a time.
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class SessionRegistry:
    def __init__(self, *, max_sessions: int = MAX_SESSIONS) -> None:
        self.max_sessions = max_sessions
        self._lock = threading.RLock()
        self._sessions: dict[str, SessionHandle] = {}

    def create(
        self,
        *,
        catalog_id: str | None,
        query: str | None = None,
        width: int = 900,
        height: int = 600,
    ) -> SessionHandle:
        entry = get_catalog(catalog_id)
        cfg = entry.config
        view = read_view_state(query)
        if view.has_view:
            lon, lat, zoom = view.lon, view.lat, view.zoom
        else:
            dv = cfg.defaultView
            lon, lat, zoom = dv.center.lon, dv.center.lat, dv.zoom
        engine = InMemoryMapEngine(make_viewport(lon, lat, zoom, width=width, height=height))
        session = ExplorerSession(engine, cfg, filters=view.filters)
        session.restore_selection(view.selected_id)
        handle = SessionHandle(session=session, engine=engine)
        with self._lock:
            self._sessions[session.id] = handle
            # Evict oldest sessions first.
            while len(self._sessions) > self.max_sessions:
                oldest = next(iter(self._sessions))
                self._sessions.pop(oldest, None)
                logger.info("evicted session %s", oldest)
        logger.info("created session %s (catalog=%s)", session.id, cfg.id)
        return handle

    def get(self, session_id: str) -> SessionHandle:
        with self._lock:
            handle = self._sessions.get(session_id)
        if handle is None:
            raise SessionNotFound(session_id)
        return handle

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


_REGISTRY = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _REGISTRY


# --- Request -> engine sync --------------------------------------------------------------


def sync_engine(
    handle: SessionHandle,
    *,
    viewport: Viewport | None,
    fragments: Iterable[dict[str, Any]] | None,
) -> None:
    """
    Bring the server-side map mirror in line with what the client reports.
    """
    if viewport is not None:
        handle.engine.set_viewport(viewport)
    if fragments is not None:
        handle.engine.load_fragments(FOOTPRINT_SOURCE, [Fragment.from_geojson(f) for f in fragments])


def viewport_from_request(
    *,
    lon: float,
    lat: float,
    zoom: float,
    bbox: BBox | None,
    width: int | None,
    height: int | None,
    current: Viewport,
) -> Viewport:
    return make_viewport(
        lon,
        lat,
        zoom,
        bbox=bbox,
        width=int(width or current.width),
        height=int(height or current.height),
    )


def dispatch_event(handle: SessionHandle, event: MapEvent) -> dict[str, Any]:
    result = handle.session.dispatch(event)
    return session_payload(handle, result=result)


# --- Response mapping --------------------------------------------------------------------


def feature_payload(feature: Feature) -> dict[str, Any]:
    return feature.to_geojson()


def _click_payload(outcome: ClickOutcome | None) -> dict[str, Any] | None:
    if outcome is None:
        return None
    return {
        "kind": outcome.kind,
        "featureId": outcome.feature_id,
        "candidates": [feature_payload(f) for f in outcome.candidates],
        "bbox": outcome.bbox.as_list() if outcome.bbox is not None else None,
    }


def _settle_payload(info: SettleInfo | None) -> dict[str, Any] | None:
    if info is None:
        return None
    return {
        "bbox": info.bbox.as_list(),
        "center": {"lon": info.center[0], "lat": info.center[1]},
        "zoom": info.zoom,
    }


def _viewport_payload(vp: Viewport) -> dict[str, Any]:
    return {
        "center": {"lon": vp.center_lon, "lat": vp.center_lat},
        "zoom": vp.zoom,
        "bbox": vp.bbox.as_list(),
    }


def selected_payload(session: ExplorerSession) -> dict[str, Any] | None:
    feature = session.selection.state.selected_feature
    if feature is None:
        return None
    out = feature_payload(feature)
    out["links"] = editor_links(
        feature.attributes.as_properties(),
        title=feature.attributes.title,
        bbox=feature.bbox,
        settings=session.catalog.fullResolution,
    )
    return out


def session_payload(handle: SessionHandle, *, result: EventResult | None = None) -> dict[str, Any]:
    session = handle.session
    out: dict[str, Any] = {
        "sessionId": session.id,
        "catalogId": session.catalog.id,
        "commands": handle.engine.drain_commands(),
        "selectedId": session.selected_id,
        "hoveredId": session.hovered_id,
        "viewport": _viewport_payload(handle.engine.viewport()),
        "url": session.url_query(),
    }
    if result is not None:
        out["event"] = result.event
        out["features"] = (
            [feature_payload(f) for f in result.features] if result.features is not None else None
        )
        out["click"] = _click_payload(result.click)
        out["settle"] = _settle_payload(result.settle)
        out["stats"] = result.stats
    return out


def state_payload(handle: SessionHandle) -> dict[str, Any]:
    session = handle.session
    st = session.state
    grid = st.grid
    return {
        "sessionId": session.id,
        "catalogId": session.catalog.id,
        "loaded": st.loaded,
        "filters": st.filters.to_mapping(),
        "previewsEnabled": st.previews_enabled,
        "selectedId": session.selected_id,
        "selected": selected_payload(session),
        "hoveredId": session.hovered_id,
        "features": [feature_payload(f) for f in st.features],
        "grid": {
            "band": grid.band,
            "gridZoom": grid.grid_zoom,
            "cells": len(grid.cells),
            "largeIds": list(grid.large_ids),
        }
        if grid is not None
        else None,
        "previews": session.previews.live_ids(),
        "viewport": _viewport_payload(handle.engine.viewport()),
        "lastSettle": _settle_payload(st.last_settle),
        "url": session.url_query(),
    }
