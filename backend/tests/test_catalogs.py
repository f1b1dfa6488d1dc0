from __future__ import annotations

import pytest

from catalogs.registry import (
    clear_registry_cache,
    default_catalog_id,
    get_catalog,
    get_registry,
    list_catalogs,
)
from catalogs.types import CatalogConfig


@pytest.fixture(autouse=True)
def _fresh_registry():
    clear_registry_cache()
    yield
    clear_registry_cache()


def _write_catalog(root, cid, body):
    d = root / cid
    d.mkdir(parents=True)
    (d / "catalog.yaml").write_text(body, encoding="utf-8")


def test_shipped_catalog_loads_with_expected_defaults():
    ids = {c.id for c in list_catalogs()}
    assert "openaerialmap" in ids
    cfg = get_catalog("openaerialmap").config
    assert cfg.source.sourceLayer == "images"
    assert cfg.previews.maxPreviews == 25
    assert cfg.lod.thresholds().large_image_km2 == 50.0
    assert cfg.selection.fitMaxZoom == 18
    assert cfg.fullResolution.minZoom == 14
    assert cfg.settleMs == 500


def test_unknown_catalog_falls_back_to_default():
    assert get_catalog("does-not-exist").config.id == default_catalog_id()
    assert get_catalog(None).config.id == default_catalog_id()


def test_catalog_dir_override_and_disabled_catalogs(tmp_path, monkeypatch):
    _write_catalog(
        tmp_path,
        "alpha",
        "id: alpha\ntitle: Alpha\nsource:\n  url: pmtiles://a\ndefaultView:\n  center: {lat: 1, lon: 2}\n  zoom: 3\n",
    )
    _write_catalog(
        tmp_path,
        "beta",
        "id: beta\ntitle: Beta\nenabled: false\nsource:\n  url: pmtiles://b\ndefaultView:\n  center: {lat: 0, lon: 0}\n  zoom: 1\n",
    )
    monkeypatch.setenv("FPX_CATALOGS_DIR", str(tmp_path))
    monkeypatch.delenv("FPX_CATALOG", raising=False)
    clear_registry_cache()

    assert list(get_registry()) == ["alpha"]
    # Preferred id is missing, so the first discovered catalog is the default.
    assert default_catalog_id() == "alpha"
    cfg = get_catalog(None).config
    assert cfg.defaultView.center.lon == 2
    assert cfg.previews.maxPreviews == 25


def test_inconsistent_lod_zooms_are_rejected(tmp_path, monkeypatch):
    _write_catalog(
        tmp_path,
        "bad",
        "id: bad\ntitle: Bad\nsource:\n  url: pmtiles://x\ndefaultView:\n  center: {lat: 0, lon: 0}\n  zoom: 1\n"
        "lod:\n  hybridMinZoom: 12\n  footprintMinZoom: 10\n",
    )
    monkeypatch.setenv("FPX_CATALOGS_DIR", str(tmp_path))
    clear_registry_cache()
    with pytest.raises(ValueError):
        get_registry()


def test_empty_catalog_root_is_an_error(tmp_path, monkeypatch):
    monkeypatch.setenv("FPX_CATALOGS_DIR", str(tmp_path / "missing"))
    clear_registry_cache()
    assert list_catalogs() == []
    with pytest.raises(RuntimeError):
        get_catalog(None)


def test_basemap_lookup_falls_back_to_default(catalog: CatalogConfig):
    assert catalog.basemap_tiles("HOT") == catalog.basemaps["hot"]
    assert catalog.basemap_tiles(None) == catalog.basemaps["carto"]
    assert CatalogConfig.model_validate(
        {
            "id": "x",
            "title": "x",
            "source": {"url": "u"},
            "defaultView": {"center": {"lat": 0, "lon": 0}, "zoom": 0},
        }
    ).basemap_tiles("carto") == []
