from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from filters.expression import Expression
from footprints.types import Fragment
from geo.aoi import BBox

EventType = Literal["load", "idle", "movestart", "moveend", "click", "mousemove"]


@dataclass(frozen=True)
class Viewport:
    """
    Camera state as last reported by the rendering engine.
    """

    center_lon: float
    center_lat: float
    zoom: float
    bbox: BBox
    # Real pixel size of the map viewport. Used for camera-fit math.
    width: int = 900
    height: int = 600


@dataclass(frozen=True)
class MapEvent:
    type: EventType
    # (lon, lat) for pointer events.
    lng_lat: tuple[float, float] | None = None


class MapEngine(Protocol):
    """
    The slice of the rendering engine this core talks to.

    Queries read what's loaded/rendered; mutations change the style. Layer specs and
    source specs are MapLibre style JSON.
    """

    def viewport(self) -> Viewport: ...

    def query_source_features(
        self, source: str, *, source_layer: str | None = None
    ) -> list[Fragment]: ...

    def query_rendered_features(
        self, layers: list[str], *, at: tuple[float, float] | None = None
    ) -> list[Fragment]: ...

    def has_layer(self, layer_id: str) -> bool: ...

    def layer_ids(self) -> list[str]: ...

    def get_source(self, source_id: str) -> dict[str, Any] | None: ...

    def add_source(self, source_id: str, spec: dict[str, Any]) -> None: ...

    def remove_source(self, source_id: str) -> None: ...

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None: ...

    def set_source_coordinates(self, source_id: str, coordinates: list[list[float]]) -> None: ...

    def add_layer(self, spec: dict[str, Any], *, before_id: str | None = None) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...

    def move_layer(self, layer_id: str, *, before_id: str | None = None) -> None: ...

    def set_filter(self, layer_id: str, expression: Expression | None) -> None: ...

    def get_filter(self, layer_id: str) -> Expression | None: ...

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def get_paint_property(self, layer_id: str, name: str) -> Any: ...

    def fit_bounds(
        self,
        bbox: BBox,
        *,
        padding: int = 0,
        max_zoom: float | None = None,
        duration_ms: int | None = None,
    ) -> None: ...
