"""Lightweight I/O helpers.

This module centralises:
- table reads and writes keyed on the file suffix
- point/station loaders that normalise column names
- simple JSON/YAML helpers and the disk cache helper used by the processor
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import pandas as pd
import yaml

from walkshed.core.errors import InputValidationError
from walkshed.models.schemas import STATIONS, TableSchema
from walkshed.models.validate import validate_df

POINT_FILE_GLOB = "points_*.parquet"

# Column spellings accepted on input, mapped to the canonical names.
POINT_RENAMES = {
    "X": "lng",
    "Y": "lat",
    "x": "lng",
    "y": "lat",
    "lon": "lng",
    "longitude": "lng",
    "latitude": "lat",
}
STATION_RENAMES = {
    "stop_lat": "latitude",
    "stop_lon": "longitude",
    "lat": "latitude",
    "lon": "longitude",
    "lng": "longitude",
}


def ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(obj: Any, path: Path) -> None:
    ensure_parent_dir(path)
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=2, default=str), encoding="utf-8")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML settings file."""
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def cached(
    path: Path | None,
    *,
    force: bool,
    read,
    build,
    write=None,
    validate=None,
) -> tuple[Any, bool]:
    """Cache-to-disk helper for expensive stages.

    Returns (obj, used_cache). A `path` of None disables caching.
    """
    if path is not None and not force and path.exists() and path.stat().st_size > 0:
        obj = read(path)
        if validate is None or validate(obj):
            return obj, True
    obj = build()
    if write is not None and path is not None:
        write(obj, path)
    return obj, False


def read_table(path: Path, *, dtype: dict[str, str] | None = None) -> pd.DataFrame:
    """Read a parquet or CSV table based on its suffix (`dtype` applies to CSV)."""
    path = Path(path)
    if not path.exists():
        raise InputValidationError(f"input file not found: {path}")
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix in {".csv", ".txt"}:
        return pd.read_csv(path, dtype=dtype)
    raise InputValidationError(f"unsupported table format: {path}")


def write_table(df: pd.DataFrame, path: Path) -> None:
    ensure_parent_dir(path)
    if path.suffix == ".parquet":
        df.to_parquet(path, index=False)
    elif path.suffix == ".csv":
        df.to_csv(path, index=False)
    else:
        raise InputValidationError(f"unsupported output format: {path}")


def normalise_columns(
    df: pd.DataFrame, renames: dict[str, str], schema: TableSchema
) -> pd.DataFrame:
    """Rename alternative spellings to canonical names, never clobbering an existing column."""
    mapping = {
        src: dst
        for src, dst in renames.items()
        if src in df.columns and dst not in df.columns and dst in schema.allowed_columns()
    }
    return df.rename(columns=mapping)


def point_files(path: Path) -> list[Path]:
    """Resolve a points input (directory of batches or a single file) to a file list."""
    path = Path(path)
    if path.is_dir():
        files = sorted(path.glob(POINT_FILE_GLOB))
        if not files:
            files = sorted(path.glob("*.parquet"))
        if not files:
            raise InputValidationError(f"no point files found in {path}")
        return files
    if not path.exists():
        raise InputValidationError(f"points input not found: {path}")
    return [path]


def read_stations(path: Path) -> pd.DataFrame:
    """Load stations from a CSV/parquet table or a GTFS feed zip."""
    path = Path(path)
    if path.suffix == ".zip":
        from walkshed.io.gtfs import read_gtfs_stops

        df = read_gtfs_stops(path)
    else:
        # ids are labels; keep leading zeros
        df = read_table(path, dtype={"stop_id": "string"})
    if "stop_id" in df.columns:
        df["stop_id"] = df["stop_id"].astype("string")
    df = normalise_columns(df, STATION_RENAMES, STATIONS)
    out = validate_df(df, STATIONS)
    if "stop_name" not in out.columns:
        out["stop_name"] = pd.Series(pd.NA, index=out.index, dtype="string")
    return out[["stop_id", "stop_name", "latitude", "longitude"]]


def sha256_file(path: Path) -> str:
    """Return SHA256 hex digest for a file."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()
