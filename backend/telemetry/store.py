from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any

import duckdb

from telemetry.config import telemetry_enabled, telemetry_path

logger = logging.getLogger(__name__)

# One row per idle pass. Stage timings are in milliseconds.
_CREATE_SQL = """
CREATE TABLE IF NOT EXISTS idle_passes (
  ts_ms BIGINT,
  catalog TEXT,
  session_id TEXT,
  zoom DOUBLE,
  band TEXT,
  fragments INTEGER,
  features INTEGER,
  cells INTEGER,
  previews INTEGER,
  features_ms DOUBLE,
  grid_ms DOUBLE,
  previews_ms DOUBLE,
  selection_ms DOUBLE,
  total_ms DOUBLE
);
"""

_INSERT_SQL = "INSERT INTO idle_passes VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"

_SUMMARY_SQL = """
SELECT
  catalog,
  band,
  COUNT(*) AS n,
  AVG(total_ms),
  quantile_cont(total_ms, 0.95),
  AVG(features),
  AVG(cells),
  AVG(previews)
FROM idle_passes
{where}
GROUP BY catalog, band
ORDER BY catalog, band
"""


class IdlePassLog:
    """
    DuckDB table of idle-pass statistics: how much each pass had to chew through
    (fragments, features, grid cells, previews) and how long each stage took.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(path))
        self._conn.execute(_CREATE_SQL)

    def record(
        self,
        *,
        catalog: str,
        session_id: str | None,
        zoom: float,
        stats: dict[str, Any],
    ) -> None:
        counts = stats.get("counts") or {}
        timings = stats.get("timingsMs") or {}
        row = (
            int(time.time() * 1000),
            catalog,
            session_id,
            float(zoom),
            stats.get("band"),
            int(counts.get("fragments", 0)),
            int(counts.get("features", 0)),
            int(counts.get("cells", 0)),
            int(counts.get("previews", 0)),
            timings.get("features"),
            timings.get("grid"),
            timings.get("previews"),
            timings.get("selection"),
            timings.get("total"),
        )
        with self._lock:
            self._conn.execute(_INSERT_SQL, row)

    def summary(self, *, catalog: str | None = None) -> list[dict[str, Any]]:
        """Per catalog and render band: pass count, mean/p95 total time, mean workload."""
        where, params = ("WHERE catalog = ?", [catalog]) if catalog else ("", [])
        with self._lock:
            rows = self._conn.execute(_SUMMARY_SQL.format(where=where), params).fetchall()
        return [
            {
                "catalog": cat,
                "band": band,
                "n": int(n),
                "avgTotalMs": avg_ms,
                "p95TotalMs": p95_ms,
                "avgFeatures": avg_features,
                "avgCells": avg_cells,
                "avgPreviews": avg_previews,
            }
            for cat, band, n, avg_ms, p95_ms, avg_features, avg_cells, avg_previews in rows
        ]

    def close(self, *, delete: bool = False) -> None:
        with self._lock:
            self._conn.close()
        if delete:
            self.path.unlink(missing_ok=True)


_LOG: IdlePassLog | None = None
_LOG_LOCK = threading.Lock()


def get_pass_log() -> IdlePassLog | None:
    """
    The process-wide log, or None when telemetry is switched off.

    Follows `FPX_TELEMETRY_PATH`: a changed path closes the old file and opens the new one.
    """
    global _LOG
    if not telemetry_enabled():
        return None
    path = telemetry_path()
    with _LOG_LOCK:
        if _LOG is not None and _LOG.path != path:
            _LOG.close()
            _LOG = None
        if _LOG is None:
            _LOG = IdlePassLog(path)
            logger.info("telemetry at %s", path)
        return _LOG


def close_pass_log(*, delete: bool = False) -> None:
    global _LOG
    with _LOG_LOCK:
        if _LOG is not None:
            _LOG.close(delete=delete)
            _LOG = None
