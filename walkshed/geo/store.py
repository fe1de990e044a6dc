"""PointStore: resident points and stations as queryable DuckDB tables."""

from __future__ import annotations

import logging
from pathlib import Path

import duckdb
import pandas as pd

from walkshed.core.errors import InputValidationError
from walkshed.io import POINT_RENAMES, point_files, read_stations
from walkshed.models.schemas import POINTS, STATIONS
from walkshed.models.validate import validate_df

LOGGER = logging.getLogger(__name__)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _plain_object_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Convert pandas "string" columns to object so DuckDB sees plain VARCHARs."""
    out = df.copy()
    for col in out.columns:
        if isinstance(out[col].dtype, pd.StringDtype):
            out[col] = out[col].astype(object).where(out[col].notna(), None)
    return out


def _resolve_column(columns: list[str], canonical: str) -> str | None:
    if canonical in columns:
        return canonical
    for alias, target in POINT_RENAMES.items():
        if target == canonical and alias in columns:
            return alias
    return None


class PointStore:
    """Immutable run inputs held in one DuckDB connection.

    Tables:
      - `points(id VARCHAR, lng DOUBLE, lat DOUBLE)`
      - `stations(stop_id VARCHAR, stop_name VARCHAR, latitude DOUBLE, longitude DOUBLE)`
    """

    def __init__(self, con: duckdb.DuckDBPyConnection) -> None:
        self.con = con
        # registered UDF name -> earth radius it was built with
        self.functions: dict[str, float] = {}

    @classmethod
    def connect(cls, *, threads: int | None = None, database: str = ":memory:") -> PointStore:
        con = duckdb.connect(database)
        if threads is not None:
            con.execute(f"SET threads TO {int(threads)}")
        return cls(con)

    @classmethod
    def from_files(
        cls,
        points_path: Path,
        stations_path: Path,
        *,
        threads: int | None = None,
    ) -> PointStore:
        store = cls.connect(threads=threads)
        try:
            store.load_points_files(point_files(points_path))
            store.load_stations(read_stations(stations_path))
        except BaseException:
            store.close()
            raise
        return store

    @classmethod
    def from_frames(
        cls,
        points: pd.DataFrame,
        stations: pd.DataFrame,
        *,
        threads: int | None = None,
    ) -> PointStore:
        store = cls.connect(threads=threads)
        try:
            store.load_points_frame(points)
            store.load_stations(stations)
        except BaseException:
            store.close()
            raise
        return store

    def load_points_files(self, files: list[Path]) -> None:
        """Create `points` from parquet/CSV batches without going through pandas."""
        names = [str(f) for f in files]
        try:
            if all(f.suffix == ".parquet" for f in files):
                raw = self.con.read_parquet(names)
            elif all(f.suffix == ".csv" for f in files):
                raw = self.con.read_csv(names)
            else:
                raise InputValidationError(
                    f"points inputs must be all parquet or all CSV: {names[:5]}"
                )
        except duckdb.Error as exc:
            raise InputValidationError(f"cannot read point files: {exc}") from exc

        columns = list(raw.columns)
        resolved = {c: _resolve_column(columns, c) for c in POINTS.required_columns}
        missing = [c for c, src in resolved.items() if src is None]
        if missing:
            raise InputValidationError(f"{POINTS.name}: missing required columns: {missing}")

        raw.create_view("points_raw")
        try:
            self.con.execute(
                f"""
                CREATE OR REPLACE TABLE points AS
                SELECT
                    CAST({_quote(resolved['id'])} AS VARCHAR) AS id,
                    CAST({_quote(resolved['lng'])} AS DOUBLE) AS lng,
                    CAST({_quote(resolved['lat'])} AS DOUBLE) AS lat
                FROM points_raw
                """
            )
        except duckdb.Error as exc:
            raise InputValidationError(f"{POINTS.name}: cannot coerce columns: {exc}") from exc
        finally:
            self.con.execute("DROP VIEW IF EXISTS points_raw")
        self._check_points()
        LOGGER.info("Loaded %d points from %d file(s)", self.n_points, len(files))

    def load_points_frame(self, points: pd.DataFrame) -> None:
        df = validate_df(points, POINTS)[list(POINTS.required_columns)]
        self.con.register("points_df", _plain_object_columns(df))
        self.con.execute("CREATE OR REPLACE TABLE points AS SELECT * FROM points_df")
        self.con.unregister("points_df")
        LOGGER.info("Loaded %d points", len(df))

    def load_stations(self, stations: pd.DataFrame) -> None:
        df = validate_df(stations, STATIONS)
        if "stop_name" not in df.columns:
            df["stop_name"] = pd.Series(pd.NA, index=df.index, dtype="string")
        df = df[["stop_id", "stop_name", "latitude", "longitude"]]
        self.con.register("stations_df", _plain_object_columns(df))
        self.con.execute("CREATE OR REPLACE TABLE stations AS SELECT * FROM stations_df")
        self.con.unregister("stations_df")
        n_names = df["stop_name"].nunique()
        LOGGER.info("Loaded %d stations (%d distinct names)", len(df), n_names)

    def _check_points(self) -> None:
        n_null, n_range, n_rows, n_ids = self.con.execute(
            """
            SELECT
                count(*) FILTER (WHERE id IS NULL OR lng IS NULL OR lat IS NULL),
                count(*) FILTER (
                    WHERE isnan(lng) OR isnan(lat)
                       OR lng NOT BETWEEN -180 AND 180
                       OR lat NOT BETWEEN -90 AND 90
                ),
                count(*),
                count(DISTINCT id)
            FROM points
            """
        ).fetchone()
        if n_null:
            raise InputValidationError(f"{POINTS.name}: {n_null} rows have null id/lng/lat")
        if n_range:
            raise InputValidationError(
                f"{POINTS.name}: {n_range} rows have out-of-range coordinates"
            )
        if n_ids != n_rows:
            raise InputValidationError(f"{POINTS.name}: {n_rows - n_ids} duplicate point ids")

    @property
    def n_points(self) -> int:
        return int(self.con.execute("SELECT count(*) FROM points").fetchone()[0])

    @property
    def n_stations(self) -> int:
        return int(self.con.execute("SELECT count(*) FROM stations").fetchone()[0])

    def points_frame(self) -> pd.DataFrame:
        return self.con.execute("SELECT id, lng, lat FROM points").df()

    def stations_frame(self) -> pd.DataFrame:
        return self.con.execute(
            "SELECT stop_id, stop_name, latitude, longitude FROM stations"
        ).df()

    def close(self) -> None:
        self.con.close()

    def __enter__(self) -> PointStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
