"""Project configuration (paths, constants, deterministic seed)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

# Reproducibility
SEED: int = 20250101

# CRS defaults
CRS_WGS84: str = "EPSG:4326"

# Sphere used for great-circle distances. This is the WGS84 *equatorial* radius,
# not the mean radius (6,371,008.8 m); distances come out ~0.1% long at mid latitudes.
EARTH_RADIUS_M: float = 6_378_137.0

# Walking-distance thresholds (meters)
COARSE_THRESHOLD_M: float = 500.0
FINE_THRESHOLD_M: float = 500.0


def project_root() -> Path:
    """Return repository root assuming this file lives in `<root>/walkshed/core/config.py`."""
    return Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class Paths:
    root: Path
    config: Path
    data_raw: Path
    data_processed: Path

    raw_points: Path
    raw_stations: Path

    processed_candidates: Path
    processed_results: Path
    processed_meta: Path


def get_paths(root: Path | None = None) -> Paths:
    r = project_root() if root is None else Path(root).resolve()
    data_raw = r / "data" / "raw"
    data_processed = r / "data" / "processed"
    return Paths(
        root=r,
        config=r / "config",
        data_raw=data_raw,
        data_processed=data_processed,
        raw_points=data_raw / "points",
        raw_stations=data_raw / "stations.csv",
        processed_candidates=data_processed / "candidates.parquet",
        processed_results=data_processed / "station_access.parquet",
        processed_meta=data_processed / "_meta",
    )


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
