"""Schema definitions for pipeline dataframe contracts.

This module contains only:
- `TableSchema` (schema metadata container)
- concrete table schemas (`POINTS`, `STATIONS`, `CANDIDATE_PAIRS`, `RESULTS`, ...)
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, Field


class TableSchema(BaseModel):
    """A simple schema for a pandas DataFrame (column-level contract)."""

    name: str
    required_columns: tuple[str, ...] = Field(default_factory=tuple)
    optional_columns: tuple[str, ...] = Field(default_factory=tuple)
    # pandas dtype strings, e.g. "string", "Float64", "float64"
    dtypes: Mapping[str, str] = Field(default_factory=dict)
    non_null: tuple[str, ...] = Field(default_factory=tuple)
    unique: tuple[str, ...] = Field(default_factory=tuple)
    # (lng_col, lat_col) pairs that must be valid WGS84 degrees
    coordinates: tuple[tuple[str, str], ...] = Field(default_factory=tuple)

    def allowed_columns(self) -> set[str]:
        return set(self.required_columns) | set(self.optional_columns)


POINTS = TableSchema(
    name="points",
    required_columns=("id", "lng", "lat"),
    dtypes={"id": "string", "lng": "float64", "lat": "float64"},
    non_null=("id", "lng", "lat"),
    unique=("id",),
    coordinates=(("lng", "lat"),),
)

STATIONS = TableSchema(
    name="stations",
    required_columns=("stop_id", "latitude", "longitude"),
    optional_columns=("stop_name",),
    dtypes={
        "stop_id": "string",
        "stop_name": "string",
        "latitude": "float64",
        "longitude": "float64",
    },
    non_null=("stop_id", "latitude", "longitude"),
    unique=("stop_id",),
    coordinates=(("longitude", "latitude"),),
)

CANDIDATE_PAIRS = TableSchema(
    name="candidate_pairs",
    required_columns=("point_id", "stop_id", "great_circle_distance_m"),
    optional_columns=("point_lng", "point_lat", "stop_lng", "stop_lat"),
    dtypes={
        "point_id": "string",
        "stop_id": "string",
        "great_circle_distance_m": "float64",
        "point_lng": "float64",
        "point_lat": "float64",
        "stop_lng": "float64",
        "stop_lat": "float64",
    },
    non_null=("point_id", "stop_id", "great_circle_distance_m"),
    unique=("point_id", "stop_id"),
)

RESULTS = TableSchema(
    name="station_access",
    required_columns=("point_id", "stop_id", "path_distance_m"),
    dtypes={
        "point_id": "string",
        "stop_id": "string",
        "path_distance_m": "float64",
    },
    non_null=("point_id", "stop_id", "path_distance_m"),
    unique=("point_id", "stop_id"),
)

ROUTING_FAILURES = TableSchema(
    name="routing_failures",
    required_columns=("point_id", "n_candidates", "attempts", "error"),
    dtypes={
        "point_id": "string",
        "n_candidates": "int64",
        "attempts": "int64",
        "error": "string",
    },
    non_null=("point_id",),
)
