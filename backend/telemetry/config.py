from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def telemetry_path() -> Path:
    # Store under repo so it's easy to share/query (and stays local).
    return Path(
        os.getenv("FPX_TELEMETRY_PATH")
        or (_repo_root() / "data" / "telemetry" / "telemetry.duckdb")
    )


def telemetry_enabled() -> bool:
    v = (os.getenv("FPX_TELEMETRY") or "1").strip().lower()
    return v not in {"0", "false", "no", "off"}


def log_level() -> str:
    return (os.getenv("FPX_LOG_LEVEL") or "INFO").strip() or "INFO"


def json_logs_enabled() -> bool:
    v = (os.getenv("FPX_LOG_JSON") or "0").strip().lower()
    return v in {"1", "true", "yes", "on"}


def cors_origins() -> list[str]:
    raw = os.getenv("FPX_CORS_ORIGINS")
    if not raw:
        return ["http://localhost:5173", "http://127.0.0.1:5173"]
    return [o.strip() for o in raw.split(",") if o.strip()]
