from __future__ import annotations

from catalogs.types import CatalogFullResolution
from geo.aoi import BBox
from selection.fullres import (
    editor_links,
    josm_imagery_url,
    resolve_tms_url,
    storage_template,
    tile_template,
)

SETTINGS = CatalogFullResolution()

TILER_PREFIX = "https://titiler.hotosm.org/cog/tiles/WebMercatorQuad/{z}/{x}/{y}@1x?url="


def test_explicit_template_on_redirect_host_is_rewritten_to_tiler():
    props = {"tms": "https://tiles.openaerialmap.org/5a1b/0/5a1c/{z}/{x}/{y}"}
    assert resolve_tms_url(props, SETTINGS) == (
        TILER_PREFIX
        + "https%3A%2F%2Foin-hotosm-temp.s3.us-east-1.amazonaws.com%2F5a1b%2F0%2F5a1c.tif"
    )


def test_template_on_other_hosts_is_used_as_is():
    props = {"tms": "https://tiles.example.org/img/{z}/{x}/{y}.png"}
    assert resolve_tms_url(props, SETTINGS) == props["tms"]
    no_rewrite = CatalogFullResolution(redirectPrefix=None)
    redirecting = {"tms": "https://tiles.openaerialmap.org/a/0/b/{z}/{x}/{y}"}
    assert resolve_tms_url(redirecting, no_rewrite) == redirecting["tms"]


def test_template_without_placeholders_gets_xyz_suffix():
    assert tile_template({"tms": "https://tiles.example.org/img/"}, SETTINGS) == (
        "https://tiles.example.org/img/{z}/{x}/{y}"
    )


def test_storage_identifier_fallback():
    uuid = "https://oin-hotosm.s3.amazonaws.com/59e62b/0/59e62c.tif"
    assert storage_template(uuid, SETTINGS) == (
        "https://tiles.openaerialmap.org/59e62b/0/59e62c/{z}/{x}/{y}"
    )
    assert storage_template("uploads/x/file.tiff", SETTINGS) == (
        "https://tiles.openaerialmap.org/uploads/0/file/{z}/{x}/{y}"
    )
    # Not enough path segments to recover an upload id.
    assert storage_template("file.tif", SETTINGS) is None
    assert tile_template({"uuid": "file.tif"}, SETTINGS) is None


def test_explicit_template_wins_over_storage_identifier():
    props = {"tms": "https://t.example/{z}/{x}/{y}", "uuid": "a/b/c.tif"}
    assert tile_template(props, SETTINGS) == "https://t.example/{z}/{x}/{y}"


def test_nothing_to_resolve():
    assert resolve_tms_url({}, SETTINGS) is None
    assert resolve_tms_url({"tms": "  ", "uuid": None}, SETTINGS) is None


def test_editor_links():
    props = {"tms": "https://t.example/{z}/{x}/{y}"}
    links = editor_links(
        props,
        title="Town",
        bbox=BBox(min_lon=10, min_lat=20, max_lon=12, max_lat=22),
        settings=SETTINGS,
    )
    assert links["tms"] == props["tms"]
    assert links["josm"].startswith("http://127.0.0.1:8111/imagery?title=OAM%20-%20Town&type=tms&url=")
    assert "tms%5B22%5D%3Ahttps%3A%2F%2Ft.example" in links["josm"]
    assert links["id"].startswith("https://www.openstreetmap.org/edit?editor=id#map=16/21.0/11.0&background=custom%3A")
    assert editor_links({}, title="x", bbox=None, settings=SETTINGS) == {}
    assert josm_imagery_url("T", "u").endswith("url=tms%5B22%5D%3Au")
