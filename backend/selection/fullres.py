from __future__ import annotations

import re
from typing import Any, Mapping
from urllib.parse import quote, urlencode

from catalogs.types import CatalogFullResolution
from geo.aoi import BBox

TILE_SUFFIX = "/{z}/{x}/{y}"

# JOSM remote control listens here when enabled.
JOSM_REMOTE_URL = "http://127.0.0.1:8111/imagery"
ID_EDITOR_URL = "https://www.openstreetmap.org/edit"
ID_EDITOR_ZOOM = 16


def _text(v: Any) -> str:
    return "" if v is None else str(v).strip()


def storage_template(uuid: str, settings: CatalogFullResolution) -> str | None:
    """
    Tile template derived from an image's storage key `.../<upload_id>/<n>/<filename>.tif`.
    """
    parts = uuid.split("/")
    if len(parts) < 3:
        return None
    filename = parts[-1]
    for ext in (".tiff", ".tif"):
        if filename.endswith(ext):
            filename = filename[: -len(ext)]
            break
    upload_id = parts[-3]
    if not filename or not upload_id:
        return None
    return settings.fallbackTemplate.replace("{upload_id}", upload_id).replace(
        "{filename}", filename
    )


def tile_template(props: Mapping[str, Any], settings: CatalogFullResolution) -> str | None:
    """
    The image's own XYZ template: explicit `tms`, else one built from `uuid`.
    """
    tms = _text(props.get("tms"))
    if tms:
        if "{z}" in tms:
            return tms
        return tms.rstrip("/") + TILE_SUFFIX
    uuid = _text(props.get("uuid"))
    if uuid:
        return storage_template(uuid, settings)
    return None


def _redirect_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(prefix) + r"(.+)" + re.escape(TILE_SUFFIX) + "$")


def resolve_tms_url(props: Mapping[str, Any], settings: CatalogFullResolution) -> str | None:
    """
    Tile url the map should load for the full-resolution overlay, or None.

    Templates on the redirecting tile host are rewritten to the COG tiler directly
    (the redirect carries no CORS headers).
    """
    template = tile_template(props, settings)
    if template is None:
        return None
    if settings.redirectPrefix:
        m = _redirect_pattern(settings.redirectPrefix).match(template)
        if m:
            cog = settings.cogUrlTemplate.replace("{path}", m.group(1))
            return settings.tilerTemplate.replace("{url}", quote(cog, safe="!~*'()"))
    return template


def josm_imagery_url(title: str, template: str) -> str:
    query = urlencode(
        {"title": f"OAM - {title}", "type": "tms", "url": f"tms[22]:{template}"},
        quote_via=quote,
    )
    return f"{JOSM_REMOTE_URL}?{query}"


def id_editor_url(template: str, bbox: BBox) -> str:
    lon, lat = bbox.center()
    background = quote(f"custom:{template}", safe="!~*'()")
    return f"{ID_EDITOR_URL}?editor=id#map={ID_EDITOR_ZOOM}/{lat}/{lon}&background={background}"


def editor_links(
    props: Mapping[str, Any],
    *,
    title: str,
    bbox: BBox | None,
    settings: CatalogFullResolution,
) -> dict[str, str]:
    """
    "Open in editor" links for an image; empty when it has no tile template.
    """
    template = tile_template(props, settings)
    if template is None:
        return {}
    out = {"tms": template, "josm": josm_imagery_url(title, template)}
    if bbox is not None:
        out["id"] = id_editor_url(template, bbox)
    return out
