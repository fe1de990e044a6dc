"""Coarse filter: every (point, station) pair within a great-circle radius.

Two engines produce the same CandidatePair table:

- `duckdb`: a non-equi join inside DuckDB using a registered `haversine` UDF as the
  join predicate. A latitude band `|lat_p - lat_s| <= threshold / R` is added to the
  join condition; it is implied by the distance predicate, so it never drops a
  qualifying pair, and it lets DuckDB plan a range join instead of a cross product.
- `kdtree`: stations on the unit sphere in a `cKDTree`, each point queried with the
  chord radius of the threshold arc, then re-checked with the exact distance.
"""

from __future__ import annotations

import logging
import time

import duckdb
import numpy as np
import pandas as pd
import pyarrow as pa
from duckdb.sqltypes import DOUBLE
from scipy.spatial import cKDTree

from walkshed.core.config import COARSE_THRESHOLD_M, EARTH_RADIUS_M
from walkshed.core.errors import EngineComputationError, InputValidationError
from walkshed.geo.distance import chord_for_arc, haversine_np, latitude_band_deg, unit_sphere_xyz
from walkshed.geo.store import PointStore
from walkshed.models.schemas import CANDIDATE_PAIRS
from walkshed.models.validate import validate_df

LOGGER = logging.getLogger(__name__)

ENGINES = ("duckdb", "kdtree")
CANDIDATE_COLUMNS = list(CANDIDATE_PAIRS.required_columns) + list(CANDIDATE_PAIRS.optional_columns)

# Slack on range predicates so float rounding at the boundary never excludes a pair
# the exact distance check would keep.
_BAND_SLACK = 1e-9

_COARSE_JOIN_SQL = """
SELECT
    p.id AS point_id,
    s.stop_id AS stop_id,
    haversine(p.lng, p.lat, s.longitude, s.latitude) AS great_circle_distance_m,
    p.lng AS point_lng,
    p.lat AS point_lat,
    s.longitude AS stop_lng,
    s.latitude AS stop_lat
FROM points AS p
JOIN stations AS s
  ON p.lat BETWEEN s.latitude - ? AND s.latitude + ?
 AND haversine(p.lng, p.lat, s.longitude, s.latitude) <= ?
ORDER BY point_id, stop_id
"""


def _arrow_haversine(radius_m: float):
    def _haversine(lng1, lat1, lng2, lat2) -> pa.Array:
        d = haversine_np(
            np.asarray(lng1, dtype=float),
            np.asarray(lat1, dtype=float),
            np.asarray(lng2, dtype=float),
            np.asarray(lat2, dtype=float),
            radius_m=radius_m,
        )
        return pa.array(d, type=pa.float64())

    return _haversine


def register_haversine(store: PointStore, *, radius_m: float = EARTH_RADIUS_M) -> None:
    """Register `haversine(lng1, lat1, lng2, lat2) -> meters` on the store's connection."""
    registered = store.functions.get("haversine")
    if registered == radius_m:
        return
    if registered is not None:
        store.con.remove_function("haversine")
    store.con.create_function(
        "haversine",
        _arrow_haversine(radius_m),
        [DOUBLE, DOUBLE, DOUBLE, DOUBLE],
        DOUBLE,
        type="arrow",
    )
    store.functions["haversine"] = radius_m


def coarse_filter_duckdb(
    store: PointStore,
    *,
    threshold_m: float = COARSE_THRESHOLD_M,
    radius_m: float = EARTH_RADIUS_M,
) -> pd.DataFrame:
    """Run the coarse join inside DuckDB and return the CandidatePair table."""
    register_haversine(store, radius_m=radius_m)
    band = latitude_band_deg(threshold_m, radius_m=radius_m) + _BAND_SLACK
    try:
        out = store.con.execute(_COARSE_JOIN_SQL, [band, band, float(threshold_m)]).df()
    except duckdb.Error as exc:
        raise EngineComputationError(f"coarse join failed: {exc}") from exc
    return out


def coarse_filter_kdtree(
    points: pd.DataFrame,
    stations: pd.DataFrame,
    *,
    threshold_m: float = COARSE_THRESHOLD_M,
    radius_m: float = EARTH_RADIUS_M,
    chunk_size: int = 1_000_000,
) -> pd.DataFrame:
    """Spatial-index rendition of the coarse join (no analytical engine required)."""
    if points.empty or stations.empty:
        return pd.DataFrame({c: pd.Series(dtype="float64") for c in CANDIDATE_COLUMNS})

    st_xyz = unit_sphere_xyz(stations["longitude"].to_numpy(), stations["latitude"].to_numpy())
    tree = cKDTree(st_xyz)
    r = chord_for_arc(threshold_m, radius_m=radius_m) * (1.0 + _BAND_SLACK) + _BAND_SLACK

    frames: list[pd.DataFrame] = []
    for start in range(0, len(points), chunk_size):
        chunk = points.iloc[start : start + chunk_size]
        p_xyz = unit_sphere_xyz(chunk["lng"].to_numpy(), chunk["lat"].to_numpy())
        hits = tree.query_ball_point(p_xyz, r=r)
        counts = np.fromiter((len(h) for h in hits), dtype=np.int64, count=len(hits))
        if counts.sum() == 0:
            continue
        p_idx = np.repeat(np.arange(len(chunk)), counts)
        s_idx = np.concatenate([np.asarray(h, dtype=np.int64) for h in hits if h])

        p_lng = chunk["lng"].to_numpy()[p_idx]
        p_lat = chunk["lat"].to_numpy()[p_idx]
        s_lng = stations["longitude"].to_numpy()[s_idx]
        s_lat = stations["latitude"].to_numpy()[s_idx]
        dist = haversine_np(p_lng, p_lat, s_lng, s_lat, radius_m=radius_m)
        keep = dist <= threshold_m

        frames.append(
            pd.DataFrame(
                {
                    "point_id": chunk["id"].to_numpy()[p_idx][keep],
                    "stop_id": stations["stop_id"].to_numpy()[s_idx][keep],
                    "great_circle_distance_m": dist[keep],
                    "point_lng": p_lng[keep],
                    "point_lat": p_lat[keep],
                    "stop_lng": s_lng[keep],
                    "stop_lat": s_lat[keep],
                }
            )
        )

    if not frames:
        return pd.DataFrame({c: pd.Series(dtype="float64") for c in CANDIDATE_COLUMNS})
    out = pd.concat(frames, ignore_index=True)
    return out.sort_values(["point_id", "stop_id"], kind="mergesort").reset_index(drop=True)


def coarse_filter(
    store: PointStore,
    *,
    threshold_m: float = COARSE_THRESHOLD_M,
    radius_m: float = EARTH_RADIUS_M,
    engine: str = "duckdb",
) -> pd.DataFrame:
    """Return validated CandidatePair rows with `great_circle_distance_m <= threshold_m`."""
    if engine not in ENGINES:
        raise InputValidationError(f"unknown coarse engine {engine!r}; expected one of {ENGINES}")
    if threshold_m <= 0:
        raise InputValidationError(f"coarse threshold must be positive, got {threshold_m}")

    t0 = time.perf_counter()
    if engine == "duckdb":
        out = coarse_filter_duckdb(store, threshold_m=threshold_m, radius_m=radius_m)
    else:
        out = coarse_filter_kdtree(
            store.points_frame(),
            store.stations_frame(),
            threshold_m=threshold_m,
            radius_m=radius_m,
        )
    out = validate_df(out[CANDIDATE_COLUMNS], CANDIDATE_PAIRS)

    LOGGER.info(
        "Coarse filter (%s, %.0f m): %d candidate pairs over %d points in %.1fs",
        engine,
        threshold_m,
        len(out),
        out["point_id"].nunique(),
        time.perf_counter() - t0,
    )
    return out
