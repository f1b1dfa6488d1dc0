from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import parse_qs, urlencode

from filters.types import FILTER_KEYS, FilterSpec

DEFAULT_CENTER = (0.0, 20.0)  # lon, lat
DEFAULT_ZOOM = 2.0
SELECTED_KEY = "selected_id"


@dataclass(frozen=True)
class ViewState:
    """
    What the page's query string says about the map, with defaults filled in.
    """

    lon: float
    lat: float
    zoom: float
    filters: FilterSpec
    selected_id: str | None = None
    # False when lat/lon/zoom were absent or malformed and defaults were used.
    has_view: bool = False


def parse_query(query: str | Mapping[str, str] | None) -> dict[str, str]:
    if query is None:
        return {}
    if isinstance(query, str):
        # Last value wins, like URLSearchParams.get on a replaced param.
        return {k: v[-1] for k, v in parse_qs(query.lstrip("?")).items() if v}
    return {str(k): str(v) for k, v in query.items() if v is not None}


def _finite(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        v = float(raw)
    except ValueError:
        return None
    return v if math.isfinite(v) else None


def read_view_state(query: str | Mapping[str, str] | None) -> ViewState:
    """
    Tolerant read: missing or malformed values fall back to defaults.

    The view is taken only when lat, lon and zoom all parse.
    """
    params = parse_query(query)
    lat = _finite(params.get("lat"))
    lon = _finite(params.get("lon"))
    zoom = _finite(params.get("zoom"))
    has_view = not (lat is None or lon is None or zoom is None)
    if not has_view:
        lon, lat = DEFAULT_CENTER
        zoom = DEFAULT_ZOOM
    filters = FilterSpec.from_mapping({k: params.get(k, "") for k in FILTER_KEYS})
    selected = (params.get(SELECTED_KEY) or "").strip() or None
    return ViewState(
        lon=lon,  # type: ignore[arg-type]
        lat=lat,  # type: ignore[arg-type]
        zoom=zoom,  # type: ignore[arg-type]
        filters=filters,
        selected_id=selected,
        has_view=has_view,
    )


def write_view(params: dict[str, str], *, lon: float, lat: float, zoom: float) -> dict[str, str]:
    params["lat"] = f"{lat:.4f}"
    params["lon"] = f"{lon:.4f}"
    params["zoom"] = f"{zoom:.1f}"
    return params


def write_filters(params: dict[str, str], spec: FilterSpec) -> dict[str, str]:
    for key, value in spec.to_mapping().items():
        if value:
            params[key] = value
        else:
            params.pop(key, None)
    return params


def write_selection(params: dict[str, str], selected_id: str | None) -> dict[str, str]:
    if selected_id:
        params[SELECTED_KEY] = selected_id
    else:
        params.pop(SELECTED_KEY, None)
    return params


def to_query(params: Mapping[str, str]) -> str:
    return urlencode(dict(params))
