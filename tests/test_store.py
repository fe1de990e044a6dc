"""PointStore loading and input validation."""

from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from walkshed.core.errors import InputValidationError
from walkshed.geo.store import PointStore


def _write_batches(tmp_path: Path, points: pd.DataFrame, *, raw_xy: bool = True) -> Path:
    out_dir = tmp_path / "points"
    out_dir.mkdir()
    df = points.rename(columns={"lng": "X", "lat": "Y"}) if raw_xy else points
    half = len(df) // 2
    df.iloc[:half].to_parquet(out_dir / "points_1.parquet", index=False)
    df.iloc[half:].to_parquet(out_dir / "points_2.parquet", index=False)
    return out_dir


def test_from_files_renames_raw_xy(tmp_path, points, stations) -> None:
    points_dir = _write_batches(tmp_path, points)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)

    with PointStore.from_files(points_dir, stations_csv) as store:
        assert store.n_points == len(points)
        assert store.n_stations == len(stations)
        loaded = store.points_frame().sort_values("id").reset_index(drop=True)

    assert list(loaded.columns) == ["id", "lng", "lat"]
    pd.testing.assert_series_equal(loaded["lng"], points["lng"], check_names=False)


def test_from_files_accepts_single_csv(tmp_path, points, stations) -> None:
    points_csv = tmp_path / "points.csv"
    points.to_csv(points_csv, index=False)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)

    with PointStore.from_files(points_csv, stations_csv) as store:
        assert store.n_points == len(points)


def test_missing_point_columns(tmp_path, stations) -> None:
    bad = tmp_path / "points"
    bad.mkdir()
    pd.DataFrame({"X": [1.0], "id": ["a"]}).to_parquet(bad / "points_1.parquet", index=False)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)

    with pytest.raises(InputValidationError, match="missing required columns"):
        PointStore.from_files(bad, stations_csv)


@pytest.mark.parametrize(
    "lng,lat",
    [(181.0, 10.0), (-180.5, 10.0), (10.0, 90.5), (10.0, -91.0), (float("nan"), 1.0)],
)
def test_out_of_range_points_are_fatal(tmp_path, stations, lng, lat) -> None:
    points = pd.DataFrame({"id": ["a", "b"], "lng": [2.0, lng], "lat": [48.0, lat]})
    points_dir = _write_batches(tmp_path, points, raw_xy=False)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)

    with pytest.raises(InputValidationError):
        PointStore.from_files(points_dir, stations_csv)


def test_duplicate_point_ids_are_fatal(points, stations) -> None:
    dup = pd.concat([points, points.iloc[[0]]], ignore_index=True)
    with pytest.raises(InputValidationError, match="share a"):
        PointStore.from_frames(dup, stations)


def test_duplicate_ids_across_batches(tmp_path, points, stations) -> None:
    dup = pd.concat([points, points.iloc[[0]]], ignore_index=True)
    points_dir = _write_batches(tmp_path, dup, raw_xy=False)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)
    with pytest.raises(InputValidationError, match="duplicate point ids"):
        PointStore.from_files(points_dir, stations_csv)


def test_bad_station_latitude_is_fatal(points, stations) -> None:
    stations.loc[0, "latitude"] = 123.0
    with pytest.raises(InputValidationError, match="out-of-range"):
        PointStore.from_frames(points, stations)


def test_shared_stop_names_are_not_an_error(points, stations) -> None:
    with PointStore.from_frames(points, stations) as store:
        st = store.stations_frame()
    assert st["stop_name"].value_counts()["Chatelet"] == 2


def test_empty_points_directory(tmp_path, stations) -> None:
    (tmp_path / "points").mkdir()
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)
    with pytest.raises(InputValidationError, match="no point files"):
        PointStore.from_files(tmp_path / "points", stations_csv)


def test_non_numeric_point_coordinates(tmp_path, stations) -> None:
    points_csv = tmp_path / "points.csv"
    pd.DataFrame({"id": ["a"], "lng": ["east"], "lat": [1.0]}).to_csv(points_csv, index=False)
    stations_csv = tmp_path / "stations.csv"
    stations.to_csv(stations_csv, index=False)

    with pytest.raises(InputValidationError, match="coerce"):
        PointStore.from_files(points_csv, stations_csv)
