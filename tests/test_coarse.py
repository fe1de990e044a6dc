"""Coarse filter tests: both engines against a brute-force reference."""

from __future__ import annotations

import pandas as pd
import pytest

from conftest import ORIGIN, brute_force_pairs, north_of, random_frames
from walkshed.core.errors import InputValidationError
from walkshed.geo.coarse import coarse_filter, coarse_filter_kdtree, register_haversine
from walkshed.geo.store import PointStore

ENGINES = ["duckdb", "kdtree"]


def _pairs(df: pd.DataFrame) -> set[tuple[str, str]]:
    return set(zip(df["point_id"].astype(str), df["stop_id"].astype(str), strict=True))


def _single(point_m: float) -> PointStore:
    lng, lat = north_of(*ORIGIN, point_m)
    points = pd.DataFrame({"id": ["p"], "lng": [lng], "lat": [lat]})
    stations = pd.DataFrame(
        {"stop_id": ["s"], "stop_name": ["s"], "longitude": [ORIGIN[0]], "latitude": [ORIGIN[1]]}
    )
    return PointStore.from_frames(points, stations)


@pytest.mark.parametrize("engine", ENGINES)
def test_pair_400m_apart_is_retained(engine) -> None:
    with _single(400.0) as store:
        out = coarse_filter(store, threshold_m=500.0, engine=engine)
    assert _pairs(out) == {("p", "s")}
    assert out.loc[0, "great_circle_distance_m"] == pytest.approx(400.0, abs=1e-3)


@pytest.mark.parametrize("engine", ENGINES)
def test_pair_600m_apart_is_excluded(engine) -> None:
    with _single(600.0) as store:
        out = coarse_filter(store, threshold_m=500.0, engine=engine)
    assert out.empty
    assert list(out.columns)[:3] == ["point_id", "stop_id", "great_circle_distance_m"]


@pytest.mark.parametrize("engine", ENGINES)
def test_fixture_candidates(engine, points, stations) -> None:
    with PointStore.from_frames(points, stations) as store:
        out = coarse_filter(store, threshold_m=500.0, engine=engine)
    assert _pairs(out) == {
        ("p0", "S1"),
        ("p0", "S1b"),
        ("p1", "S1"),
        ("p1", "S1b"),
        ("p3", "S2"),
    }
    # p1 matched two stop_ids that share one stop_name
    assert out.groupby("point_id").size().to_dict() == {"p0": 2, "p1": 2, "p3": 1}


@pytest.mark.parametrize("engine", ENGINES)
@pytest.mark.parametrize("threshold", [150.0, 500.0, 1200.0])
def test_matches_brute_force(engine, threshold) -> None:
    points, stations = random_frames(400, 60)
    with PointStore.from_frames(points, stations) as store:
        out = coarse_filter(store, threshold_m=threshold, engine=engine)

    assert (out["great_circle_distance_m"] <= threshold).all()
    assert _pairs(out) == brute_force_pairs(points, stations, threshold)


def test_engines_agree_on_distances() -> None:
    points, stations = random_frames(300, 40, seed=11)
    with PointStore.from_frames(points, stations) as store:
        a = coarse_filter(store, threshold_m=800.0, engine="duckdb")
        b = coarse_filter(store, threshold_m=800.0, engine="kdtree")
    pd.testing.assert_frame_equal(a.reset_index(drop=True), b.reset_index(drop=True), rtol=1e-9)


def test_repeat_runs_are_identical(points, stations) -> None:
    with PointStore.from_frames(points, stations) as store:
        register_haversine(store)
        first = coarse_filter(store, threshold_m=500.0)
        second = coarse_filter(store, threshold_m=500.0)
    pd.testing.assert_frame_equal(first, second)


def test_kdtree_empty_inputs() -> None:
    empty_points = pd.DataFrame({"id": [], "lng": [], "lat": []})
    stations = pd.DataFrame({"stop_id": ["s"], "longitude": [0.0], "latitude": [0.0]})
    out = coarse_filter_kdtree(empty_points, stations)
    assert out.empty


def test_rejects_unknown_engine_and_bad_threshold(points, stations) -> None:
    with PointStore.from_frames(points, stations) as store:
        with pytest.raises(InputValidationError, match="unknown coarse engine"):
            coarse_filter(store, engine="postgis")
        with pytest.raises(InputValidationError, match="positive"):
            coarse_filter(store, threshold_m=0)


def test_radius_change_reregisters_udf(points, stations) -> None:
    with PointStore.from_frames(points, stations) as store:
        full = coarse_filter(store, threshold_m=500.0)
        half = coarse_filter(store, threshold_m=500.0, radius_m=6378137.0 / 2)
    merged = full.merge(half, on=["point_id", "stop_id"], suffixes=("_full", "_half"))
    assert len(half) >= len(full)
    assert merged["great_circle_distance_m_half"].to_numpy() == pytest.approx(
        merged["great_circle_distance_m_full"].to_numpy() / 2
    )
