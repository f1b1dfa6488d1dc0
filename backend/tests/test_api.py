from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.sessions import get_registry
from main import app


def _feature(fid, w, s, e, n, **props):
    return {
        "type": "Feature",
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[w, s], [e, s], [e, n], [w, n], [w, s]]],
        },
        "properties": {"_id": fid, **props},
    }


FRAGMENTS = [
    _feature(
        "a",
        0.01,
        0.01,
        0.02,
        0.02,
        title="Harbour",
        platform="UAV",
        acquisition_end="2023-02-01T00:00:00Z",
        tms="https://tiles.openaerialmap.org/up1/0/file1/{z}/{x}/{y}",
    ),
    _feature("b", 0.05, 0.05, 0.06, 0.06, platform="satellite", acquisition_end="2024-02-01T00:00:00Z"),
]

VIEW = {"center": {"lat": 0.05, "lon": 0.05}, "zoom": 12.0}


@pytest.fixture
def client():
    get_registry().clear()
    yield TestClient(app)
    get_registry().clear()


def _create(client, query="lat=0.05&lon=0.05&zoom=12"):
    resp = client.post("/sessions", json={"query": query, "viewport": {"width": 900, "height": 600}})
    assert resp.status_code == 200
    return resp.json()


def _event(client, sid, **body):
    resp = client.post(f"/sessions/{sid}/events", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health_and_catalogs(client):
    assert client.get("/health").json() == {"status": "ok"}
    rows = client.get("/catalogs").json()
    ids = {r["id"] for r in rows}
    assert "openaerialmap" in ids
    oam = next(r for r in rows if r["id"] == "openaerialmap")
    assert oam["defaultBasemap"] == "carto"


def test_session_lifecycle(client):
    created = _create(client)
    sid = created["sessionId"]
    assert created["catalogId"] == "openaerialmap"
    assert created["commands"] == []
    assert created["viewport"]["zoom"] == 12.0

    loaded = _event(client, sid, type="load", view=VIEW)
    assert any(c["op"] == "addLayer" for c in loaded["commands"])

    idle = _event(client, sid, type="idle", view=VIEW, fragments=FRAGMENTS)
    assert [f["properties"]["id"] for f in idle["features"]] == ["b", "a"]
    assert idle["features"][1]["properties"]["platform"] == "uav"
    assert idle["stats"]["counts"]["features"] == 2

    click = _event(client, sid, type="click", lngLat={"lon": 0.015, "lat": 0.015})
    assert click["click"]["kind"] == "selected"
    assert click["selectedId"] == "a"
    assert "selected_id=a" in click["url"]
    assert any(c["op"] == "fitBounds" for c in click["commands"])

    # The fit is ours: its moveend doesn't settle.
    moved = _event(client, sid, type="moveend")
    assert moved["settle"] is None

    state = client.get(f"/sessions/{sid}/state").json()
    assert state["loaded"] is True
    assert state["selected"]["properties"]["title"] == "Harbour"
    assert "josm" in state["selected"]["links"]

    assert client.delete(f"/sessions/{sid}").status_code == 200
    assert client.get(f"/sessions/{sid}/state").status_code == 404



def test_quick_moves_settle_once_after_the_delay(client, clock):
    sid = _create(client)["sessionId"]
    get_registry().get(sid).session.debouncer.clock = clock
    _event(client, sid, type="load", view=VIEW)

    for zoom in (12.5, 13.0):
        assert _event(client, sid, type="movestart")["settle"] is None
        clock.advance(0.1)
        moved = _event(client, sid, type="moveend", view={**VIEW, "zoom": zoom})
        assert moved["settle"] is None
    assert client.get(f"/sessions/{sid}/state").json()["lastSettle"] is None

    clock.advance(0.6)
    state = client.get(f"/sessions/{sid}/state").json()
    assert state["lastSettle"]["zoom"] == 13.0
    # Already delivered; the next event carries no second settle.
    assert _event(client, sid, type="idle", view={**VIEW, "zoom": 13.0})["settle"] is None

def test_session_reads_filters_from_query(client):
    created = _create(client, "lat=0.05&lon=0.05&zoom=12&platform=uav")
    sid = created["sessionId"]
    assert "platform=uav" in created["url"]
    _event(client, sid, type="load", view=VIEW)
    idle = _event(client, sid, type="idle", view=VIEW, fragments=FRAGMENTS)
    assert [f["properties"]["id"] for f in idle["features"]] == ["a"]


def test_session_without_view_uses_catalog_default(client):
    created = _create(client, query=None)
    assert created["viewport"]["center"] == {"lon": 0.0, "lat": 20.0}
    assert created["viewport"]["zoom"] == 2.0


def test_filters_endpoint_returns_refiltered_list(client):
    sid = _create(client)["sessionId"]
    _event(client, sid, type="load", view=VIEW)
    _event(client, sid, type="idle", view=VIEW, fragments=FRAGMENTS)
    resp = client.put(f"/sessions/{sid}/filters", json={"platform": "satellite"})
    assert resp.status_code == 200
    data = resp.json()
    assert [f["properties"]["id"] for f in data["features"]] == ["b"]
    assert any(c["op"] == "setFilter" for c in data["commands"])


def test_select_hover_and_basemap_endpoints(client):
    sid = _create(client)["sessionId"]
    _event(client, sid, type="load", view=VIEW)
    _event(client, sid, type="idle", view=VIEW, fragments=FRAGMENTS)

    sel = client.post(f"/sessions/{sid}/select", json={"featureId": "b"}).json()
    assert sel["moved"] is True
    assert sel["selected"]["properties"]["id"] == "b"

    hov = client.put(f"/sessions/{sid}/hover", json={"featureId": "a"}).json()
    assert hov["hoveredId"] == "a"

    base = client.put(f"/sessions/{sid}/basemap", json={"name": "hot"}).json()
    assert base["tiles"] and "hot" in base["tiles"][0]

    fit = client.post(
        f"/sessions/{sid}/search-fit",
        json={"bbox": {"minLon": 14.2, "minLat": 49.9, "maxLon": 14.7, "maxLat": 50.2}},
    ).json()
    assert fit["commands"][-1]["op"] == "fitBounds"
    assert fit["commands"][-1]["maxZoom"] == 14.0

    desel = client.post(f"/sessions/{sid}/select", json={"featureId": None}).json()
    assert desel["selectedId"] is None
    assert desel["selected"] is None


def test_pointer_events_need_coordinates(client):
    sid = _create(client)["sessionId"]
    resp = client.post(f"/sessions/{sid}/events", json={"type": "click"})
    assert resp.status_code == 400


def test_unknown_session_is_404(client):
    assert client.post("/sessions/nope/events", json={"type": "idle"}).status_code == 404
    assert client.delete("/sessions/nope").status_code == 404


def test_telemetry_summary_when_disabled(client):
    data = client.get("/telemetry/summary").json()
    assert data == {"enabled": False, "summary": []}
