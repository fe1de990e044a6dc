"""Validation utilities for pipeline dataframe contracts."""

from __future__ import annotations

import pandas as pd

from walkshed.core.errors import InputValidationError
from walkshed.models.schemas import TableSchema


def validate_df(
    df: pd.DataFrame,
    schema: TableSchema,
    *,
    coerce_dtypes: bool = True,
    allow_extra_columns: bool = True,
) -> pd.DataFrame:
    """Validate a dataframe against a schema. Returns a (possibly coerced) copy."""
    missing = [c for c in schema.required_columns if c not in df.columns]
    if missing:
        raise InputValidationError(f"{schema.name}: missing required columns: {missing}")

    if not allow_extra_columns:
        extra = [c for c in df.columns if c not in schema.allowed_columns()]
        if extra:
            raise InputValidationError(f"{schema.name}: unexpected columns: {extra}")

    out = df.copy()

    if coerce_dtypes and schema.dtypes:
        for col, dtype in schema.dtypes.items():
            if col not in out.columns:
                continue
            try:
                out[col] = out[col].astype(dtype)
            except (TypeError, ValueError) as exc:
                raise InputValidationError(
                    f"{schema.name}: failed to coerce column '{col}' to dtype '{dtype}': {exc}"
                ) from exc

    if schema.non_null:
        bad = [c for c in schema.non_null if c in out.columns and out[c].isna().any()]
        if bad:
            counts = {c: int(out[c].isna().sum()) for c in bad}
            raise InputValidationError(
                f"{schema.name}: non-null columns contain NA values: {counts}"
            )

    if schema.unique:
        dup = out.duplicated(subset=list(schema.unique), keep=False)
        if dup.any():
            sample = out.loc[dup, list(schema.unique)].head(5).to_dict(orient="records")
            raise InputValidationError(
                f"{schema.name}: {int(dup.sum())} rows share a {schema.unique} key (e.g. {sample})"
            )

    for lng_col, lat_col in schema.coordinates:
        check_coordinate_ranges(out[lng_col], out[lat_col], table=schema.name)

    return out


def check_coordinate_ranges(lng: pd.Series, lat: pd.Series, *, table: str) -> None:
    """Raise if any longitude is outside [-180, 180] or latitude outside [-90, 90]."""
    bad_lng = ~lng.between(-180.0, 180.0)
    bad_lat = ~lat.between(-90.0, 90.0)
    bad = bad_lng | bad_lat
    if bad.any():
        sample = pd.DataFrame({lng.name: lng[bad], lat.name: lat[bad]}).head(5)
        raise InputValidationError(
            f"{table}: {int(bad.sum())} rows have out-of-range coordinates "
            f"(e.g. {sample.to_dict(orient='records')})"
        )
