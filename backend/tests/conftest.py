import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `footprints.*`, `geo.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def _no_telemetry(monkeypatch):
    # Tests that exercise the store turn it back on with a tmp path.
    monkeypatch.setenv("FPX_TELEMETRY", "0")


@pytest.fixture
def catalog():
    from catalogs.types import CatalogConfig

    return CatalogConfig.model_validate(
        {
            "id": "test",
            "title": "Test catalog",
            "source": {"url": "pmtiles://example.invalid/images.pmtiles"},
            "defaultView": {"center": {"lat": 0.0, "lon": 0.0}, "zoom": 2},
            "basemaps": {
                "carto": ["https://basemap.example/carto/{z}/{x}/{y}.png"],
                "hot": ["https://basemap.example/hot/{z}/{x}/{y}.png"],
            },
            "defaultBasemap": "carto",
        }
    )


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()
