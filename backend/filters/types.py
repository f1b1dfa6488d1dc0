from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Mapping

PlatformClass = Literal["any", "satellite", "uav", "other"]

_PLATFORM_ALIASES: dict[str, PlatformClass] = {
    "": "any",
    "any": "any",
    "all": "any",
    "satellite": "satellite",
    "uav": "uav",
    "drone": "uav",
    "other": "other",
    "aircraft": "other",
}

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Query/JSON key -> attribute name.
FILTER_KEYS: dict[str, str] = {
    "dateStart": "date_start",
    "dateEnd": "date_end",
    "platform": "platform",
    "license": "license",
}


def normalize_platform(raw: Any) -> PlatformClass:
    key = str(raw or "").strip().lower()
    # Unknown platform classes impose no constraint, same as an empty field.
    return _PLATFORM_ALIASES.get(key, "any")


def normalize_date(raw: Any) -> str:
    """
    Return the ISO date (YYYY-MM-DD) or "" when the input is empty or invalid.
    """
    s = str(raw or "").strip()
    if not _ISO_DATE_RE.match(s):
        return ""
    try:
        return date.fromisoformat(s).isoformat()
    except ValueError:
        return ""


@dataclass(frozen=True)
class FilterSpec:
    """
    User filter criteria. Empty fields mean "no constraint".

    The object is always replaced as a whole; callers never patch one field in place.
    """

    date_start: str = ""
    date_end: str = ""
    platform: str = ""
    license: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "FilterSpec":
        data = data or {}
        values: dict[str, str] = {}
        for key, attr in FILTER_KEYS.items():
            raw = data.get(key, data.get(attr))
            values[attr] = "" if raw is None else str(raw)
        return cls(**values)

    def normalized(self) -> "FilterSpec":
        platform = normalize_platform(self.platform)
        return FilterSpec(
            date_start=normalize_date(self.date_start),
            date_end=normalize_date(self.date_end),
            platform="" if platform == "any" else platform,
            license=(self.license or "").strip(),
        )

    def is_empty(self) -> bool:
        n = self.normalized()
        return not (n.date_start or n.date_end or n.platform or n.license)

    def to_mapping(self) -> dict[str, str]:
        return {key: getattr(self, attr) for key, attr in FILTER_KEYS.items()}
