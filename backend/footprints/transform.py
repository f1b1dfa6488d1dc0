from __future__ import annotations

import math
from typing import Any

from footprints.types import FeatureAttributes

_GB = 1_073_741_824
_MB = 1_048_576


def _as_float(v: Any) -> float | None:
    try:
        if v is None or isinstance(v, bool):
            return None
        f = float(v)
    except Exception:
        return None
    return f if math.isfinite(f) else None


def _text_or_none(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v)
    return s or None


def format_file_size(raw: Any) -> str:
    n = _as_float(raw)
    if not n:
        return "Unknown"
    if n >= _GB:
        return f"{n / _GB:.2f} GB"
    # Half-up rounding, so 1.5 MB reads as "2 MB".
    return f"{int(math.floor(n / _MB + 0.5))} MB"


def format_gsd(raw: Any) -> str:
    g = _as_float(raw)
    if not g:
        return "N/A"
    return f"{g:.2f} m"


def canonical_attributes(props: dict[str, Any]) -> FeatureAttributes:
    """
    Map raw vector-tile properties onto the attribute set the list UI renders.
    """
    acquisition_end = _text_or_none(props.get("acquisition_end"))
    return FeatureAttributes(
        title=_text_or_none(props.get("title")) or "Untitled image",
        provider=_text_or_none(props.get("provider")) or "Unknown",
        date=acquisition_end or "Unknown Date",
        platform=(_text_or_none(props.get("platform")) or "unknown").lower(),
        sensor=_text_or_none(props.get("sensor")) or "Unknown Sensor",
        gsd=format_gsd(props.get("gsd")),
        file_size=format_file_size(props.get("file_size")),
        license=_text_or_none(props.get("license")) or "Unknown License",
        thumbnail=_text_or_none(props.get("thumbnail")),
        tms=_text_or_none(props.get("tms")),
        uuid=_text_or_none(props.get("uuid")),
        acquisition_end=acquisition_end,
    )
