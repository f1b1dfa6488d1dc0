from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from geo.aoi import BBox
from geo.ops import bbox_polygon

# Stable identity property carried by every tile fragment of one image.
ID_PROPERTY = "_id"


@dataclass(frozen=True)
class Fragment:
    """
    One (possibly tile-clipped) piece of an image footprint as stored in a vector tile.

    Several fragments share the same `_id` when a footprint crosses tile seams.
    """

    geometry: dict[str, Any] | None
    props: dict[str, Any] = field(default_factory=dict)

    @property
    def feature_id(self) -> str | None:
        fid = self.props.get(ID_PROPERTY)
        if fid is None or fid == "":
            return None
        return str(fid)

    @classmethod
    def from_geojson(cls, obj: dict[str, Any]) -> "Fragment":
        props = dict(obj.get("properties") or {})
        # Tolerate a top-level feature id when the properties don't carry one.
        if ID_PROPERTY not in props and obj.get("id") is not None:
            props[ID_PROPERTY] = obj["id"]
        return cls(geometry=obj.get("geometry"), props=props)


@dataclass(frozen=True)
class FeatureAttributes:
    title: str
    provider: str
    date: str
    platform: str
    sensor: str
    gsd: str
    file_size: str
    license: str
    thumbnail: str | None
    tms: str | None
    uuid: str | None
    acquisition_end: str | None

    def as_properties(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "provider": self.provider,
            "date": self.date,
            "platform": self.platform,
            "sensor": self.sensor,
            "gsd": self.gsd,
            "file_size": self.file_size,
            "license": self.license,
            "thumbnail": self.thumbnail,
            "tms": self.tms,
            "uuid": self.uuid,
            "acquisition_end": self.acquisition_end,
        }


@dataclass(frozen=True)
class Feature:
    """
    One logical image footprint, as emitted to the list/detail UI.
    """

    id: str
    geometry: dict[str, Any] | None
    attributes: FeatureAttributes
    bbox: BBox | None = None

    def with_bbox_geometry(self, bbox: BBox) -> "Feature":
        return Feature(
            id=self.id,
            geometry=bbox_polygon(bbox),
            attributes=self.attributes,
            bbox=bbox,
        )

    def to_geojson(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {"id": self.id, **self.attributes.as_properties()},
        }
        if self.bbox is not None:
            out["bbox"] = self.bbox.as_list()
        return out


@dataclass(frozen=True)
class MergedFootprint:
    """
    All loaded fragments of one identity folded into a single bbox.

    `bbox` is None when none of the fragments had usable geometry.
    """

    feature_id: str
    fragment: Fragment
    bbox: BBox | None
    fragment_count: int

    @property
    def props(self) -> dict[str, Any]:
        return self.fragment.props


@dataclass(frozen=True)
class FullBBox:
    bbox: BBox
    fragment: Fragment
