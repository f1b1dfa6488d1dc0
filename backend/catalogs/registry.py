from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import yaml

from catalogs.types import CatalogConfig

FALLBACK_CATALOG_ID = "openaerialmap"


def _repo_root() -> Path:
    # .../backend/catalogs/registry.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def _catalogs_root() -> Path:
    override = os.getenv("FPX_CATALOGS_DIR")
    if override:
        return Path(override)
    return _repo_root() / "catalogs"


@dataclass(frozen=True)
class CatalogEntry:
    config: CatalogConfig
    # Absolute path to catalog.yaml on disk (useful for debugging).
    path: Path


def _iter_catalog_yaml_files() -> Iterable[Path]:
    root = _catalogs_root()
    if not root.exists():
        return []
    # Convention: catalogs/*/catalog.yaml
    return root.glob("*/catalog.yaml")


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid catalog yaml root: {path}")
    return data


@lru_cache(maxsize=1)
def get_registry() -> dict[str, CatalogEntry]:
    out: dict[str, CatalogEntry] = {}
    for p in sorted(_iter_catalog_yaml_files(), key=lambda x: str(x)):
        cfg = CatalogConfig.model_validate(_load_yaml(p))
        if not cfg.enabled:
            continue
        lod = cfg.lod
        if lod.hybridMinZoom > lod.footprintMinZoom:
            raise ValueError(f"Catalog `lod.hybridMinZoom` exceeds `footprintMinZoom`: {p}")
        if lod.minGridZoom > lod.maxGridZoom:
            raise ValueError(f"Catalog `lod.minGridZoom` exceeds `maxGridZoom`: {p}")
        out[cfg.id] = CatalogEntry(config=cfg, path=p)
    return out


def default_catalog_id() -> str:
    reg = get_registry()
    preferred = (os.getenv("FPX_CATALOG") or "").strip() or FALLBACK_CATALOG_ID
    if not reg or preferred in reg:
        return preferred
    # Fall back to stable ordering.
    return next(iter(reg.keys()), preferred)


def list_catalogs() -> list[CatalogConfig]:
    reg = get_registry()
    return [e.config for e in reg.values()]


def get_catalog(catalog_id: str | None) -> CatalogEntry:
    reg = get_registry()
    if not reg:
        raise RuntimeError("No catalogs discovered under `catalogs/*/catalog.yaml`")
    cid = (catalog_id or "").strip() or default_catalog_id()
    if cid not in reg:
        # Unknown catalog falls back to default.
        cid = default_catalog_id()
    return reg[cid]


def clear_registry_cache() -> None:
    """
    Clear in-memory catalog registry cache.

    Useful during development: catalog YAML changes are otherwise not picked up until
    the backend process restarts.
    """
    try:
        get_registry.cache_clear()
    except Exception:
        pass
