"""Pydantic models and dataframe schema validators.

These are contracts to keep the pipeline deterministic:
- Each stage validates its inputs/outputs at boundaries.
- Distance and filtering logic stays in pure functions; the processor orchestrates I/O.
"""

from __future__ import annotations

from walkshed.models.schemas import (
    CANDIDATE_PAIRS,
    POINTS,
    RESULTS,
    ROUTING_FAILURES,
    STATIONS,
    TableSchema,
)
from walkshed.models.validate import check_coordinate_ranges, validate_df

__all__ = [
    "TableSchema",
    "validate_df",
    "check_coordinate_ranges",
    "POINTS",
    "STATIONS",
    "CANDIDATE_PAIRS",
    "RESULTS",
    "ROUTING_FAILURES",
]
