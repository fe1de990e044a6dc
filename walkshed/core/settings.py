"""Typed run settings loaded from `config/pipeline.yaml`.

The YAML file mirrors the model tree below; every key is optional and falls back
to the defaults in `walkshed.core.config`. CLI flags are applied on top through
`PipelineSettings.with_overrides`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from walkshed.core.config import (
    COARSE_THRESHOLD_M,
    EARTH_RADIUS_M,
    FINE_THRESHOLD_M,
    SEED,
    get_paths,
)
from walkshed.core.errors import InputValidationError

OUTPUT_SUFFIXES = (".parquet", ".csv")


class PathSettings(BaseModel):
    points: Path = Field(default_factory=lambda: get_paths().raw_points)
    stations: Path = Field(default_factory=lambda: get_paths().raw_stations)
    candidates: Path | None = Field(default_factory=lambda: get_paths().processed_candidates)
    output: Path = Field(default_factory=lambda: get_paths().processed_results)
    summary: Path = Field(
        default_factory=lambda: get_paths().processed_meta / "run_summary.json"
    )

    @field_validator("output", "candidates")
    @classmethod
    def _table_format(cls, value: Path | None) -> Path | None:
        if value is not None and value.suffix not in OUTPUT_SUFFIXES:
            raise ValueError(f"tables must end in one of {OUTPUT_SUFFIXES}, got {value.name!r}")
        return value


class CoarseSettings(BaseModel):
    threshold_m: float = Field(default=COARSE_THRESHOLD_M, gt=0)
    earth_radius_m: float = Field(default=EARTH_RADIUS_M, gt=0)
    engine: Literal["duckdb", "kdtree"] = "duckdb"
    # DuckDB worker threads; None lets the engine decide.
    threads: int | None = Field(default=None, gt=0)


class RoutingSettings(BaseModel):
    base_url: str = "http://localhost:5000"
    profile: str = "foot"
    measure: Literal["distance", "duration"] = "distance"
    threshold_m: float = Field(default=FINE_THRESHOLD_M, gt=0)
    workers: int = Field(default_factory=lambda: os.cpu_count() or 1, gt=0)
    timeout_s: float = Field(default=30.0, gt=0)
    retries: int = Field(default=3, ge=0)
    backoff_min_s: float = Field(default=0.5, ge=0)
    backoff_max_s: float = Field(default=10.0, ge=0)
    check_available: bool = True


class SamplingSettings(BaseModel):
    boundary: Path | None = None
    country: str = "France"
    n_batches: int = Field(default=100, gt=0)
    batch_size: int = Field(default=500_000, gt=0)
    seed: int = SEED


class PipelineSettings(BaseModel):
    paths: PathSettings = Field(default_factory=PathSettings)
    coarse: CoarseSettings = Field(default_factory=CoarseSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    sampling: SamplingSettings = Field(default_factory=SamplingSettings)

    def with_overrides(self, overrides: dict[str, dict[str, Any]]) -> PipelineSettings:
        """Return a copy with `{section: {key: value}}` overrides applied (None values skipped)."""
        data = self.model_dump()
        for section, values in overrides.items():
            if section not in data:
                raise InputValidationError(f"unknown settings section: {section!r}")
            data[section].update({k: v for k, v in values.items() if v is not None})
        return build_settings(data)


def build_settings(data: dict[str, Any] | None) -> PipelineSettings:
    try:
        return PipelineSettings.model_validate(data or {})
    except ValidationError as exc:
        raise InputValidationError(f"invalid pipeline settings: {exc}") from exc


def load_settings(path: Path | None = None) -> PipelineSettings:
    """Load settings from YAML; a missing default file yields the built-in defaults."""
    from walkshed.io import load_yaml

    if path is None:
        path = get_paths().config / "pipeline.yaml"
        if not path.exists():
            return build_settings(None)
    elif not Path(path).exists():
        raise InputValidationError(f"settings file not found: {path}")
    return build_settings(load_yaml(Path(path)))
