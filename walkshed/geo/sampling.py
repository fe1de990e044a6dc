"""Random resident points inside a country polygon, written as parquet batches."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry
from tqdm import tqdm

from walkshed.core.config import CRS_WGS84, SEED
from walkshed.core.errors import InputValidationError
from walkshed.io import ensure_parent_dir

LOGGER = logging.getLogger(__name__)

NAME_CANDIDATES = ("name_long", "NAME_LONG", "ADMIN", "admin", "NAME", "name")


def load_country_polygon(
    path: Path,
    country: str,
    *,
    name_candidates: Iterable[str] = NAME_CANDIDATES,
) -> BaseGeometry:
    """Return the (dissolved) WGS84 geometry of `country` from a boundary file."""
    gdf = gpd.read_file(path)
    name_col = next((c for c in name_candidates if c in gdf.columns), None)
    if name_col is None:
        raise InputValidationError(
            f"{path}: no country name column among {tuple(name_candidates)}"
        )
    if gdf.crs is None:
        LOGGER.warning("%s has no CRS; assuming %s", path, CRS_WGS84)
        gdf = gdf.set_crs(CRS_WGS84)
    elif gdf.crs.to_string() != CRS_WGS84:
        gdf = gdf.to_crs(CRS_WGS84)

    match = gdf[gdf[name_col].astype(str).str.casefold() == country.casefold()]
    if match.empty:
        raise InputValidationError(f"{path}: country {country!r} not found in column {name_col!r}")
    return match.geometry.union_all()


def sample_points(polygon: BaseGeometry, size: int, *, rng: np.random.Generator) -> pd.DataFrame:
    """Draw `size` points uniformly (in lon/lat) inside `polygon` with fresh UUID ids.

    Returns columns `X` (longitude), `Y` (latitude), `id`.
    """
    sampled = gpd.GeoSeries([polygon], crs=CRS_WGS84).sample_points(size, rng=rng)
    pts = sampled.explode(index_parts=False)
    return pd.DataFrame(
        {
            "X": pts.x.to_numpy(dtype=float),
            "Y": pts.y.to_numpy(dtype=float),
            "id": [str(uuid.uuid4()) for _ in range(len(pts))],
        }
    )


def generate_random_points(
    polygon: BaseGeometry,
    output_dir: Path,
    *,
    n_batches: int = 100,
    batch_size: int = 500_000,
    seed: int = SEED,
    progress: bool = True,
) -> list[Path]:
    """Write `n_batches` files `points_<i>.parquet` (1-based) of `batch_size` points each."""
    if polygon.is_empty:
        raise InputValidationError("cannot sample points from an empty polygon")
    if n_batches <= 0 or batch_size <= 0:
        raise InputValidationError("n_batches and batch_size must be positive")

    rng = np.random.default_rng(seed)
    written: list[Path] = []
    for i in tqdm(range(1, n_batches + 1), desc="points", unit="batch", disable=not progress):
        out_path = Path(output_dir) / f"points_{i}.parquet"
        ensure_parent_dir(out_path)
        sample_points(polygon, batch_size, rng=rng).to_parquet(out_path, index=False)
        written.append(out_path)

    LOGGER.info("Wrote %d batches x %d points to %s", n_batches, batch_size, output_dir)
    return written
