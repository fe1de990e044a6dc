"""Unit tests for great-circle distance helpers."""

from __future__ import annotations

import math

import numpy as np
import pytest

from conftest import ORIGIN, east_of, north_of
from walkshed.core.config import EARTH_RADIUS_M
from walkshed.geo.distance import (
    chord_for_arc,
    haversine,
    haversine_np,
    latitude_band_deg,
    unit_sphere_xyz,
)


@pytest.mark.parametrize(
    "point",
    [(0.0, 0.0), ORIGIN, (-73.9857, 40.7484), (179.9999, -89.9), (-180.0, 90.0)],
)
def test_self_distance_is_zero(point) -> None:
    assert haversine(*point, *point) == 0.0
    assert haversine_np(point[0], point[1], point[0], point[1]) == 0.0


def test_symmetry() -> None:
    a = ORIGIN
    b = (-3.7038, 40.4168)
    assert haversine(*a, *b) == haversine(*b, *a)


def test_meridian_offsets_match_arc_length() -> None:
    assert haversine(*ORIGIN, *north_of(*ORIGIN, 400)) == pytest.approx(400.0, abs=1e-6)
    assert haversine(*ORIGIN, *north_of(*ORIGIN, 600)) == pytest.approx(600.0, abs=1e-6)


def test_equatorial_radius_is_the_default() -> None:
    # one degree of longitude along the equator
    expected = EARTH_RADIUS_M * math.radians(1.0)
    assert haversine(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-12)
    assert haversine(0.0, 0.0, 1.0, 0.0, radius_m=6_371_008.8) < expected


def test_antipodal_points_do_not_produce_nan() -> None:
    d = haversine(0.0, 0.0, 180.0, 0.0)
    assert not math.isnan(d)
    assert d == pytest.approx(math.pi * EARTH_RADIUS_M)
    assert not np.isnan(haversine_np([0.0], [45.0], [-180.0], [-45.0])).any()


def test_vectorised_matches_scalar() -> None:
    rng = np.random.default_rng(1)
    lng1, lng2 = rng.uniform(-180, 180, (2, 200))
    lat1, lat2 = rng.uniform(-90, 90, (2, 200))
    vec = haversine_np(lng1, lat1, lng2, lat2)
    scalar = [haversine(*args) for args in zip(lng1, lat1, lng2, lat2)]
    np.testing.assert_allclose(vec, scalar, rtol=1e-12)


def test_latitude_band_bounds_any_pair_within_threshold() -> None:
    band = latitude_band_deg(500.0)
    lng, lat = north_of(*ORIGIN, 499.0)
    assert abs(lat - ORIGIN[1]) <= band
    # an east-west pair inside the threshold has a latitude difference well inside the band
    assert abs(east_of(*ORIGIN, 499.0)[1] - ORIGIN[1]) <= band


def test_chord_radius_covers_arc() -> None:
    a = unit_sphere_xyz([ORIGIN[0]], [ORIGIN[1]])[0]
    b = unit_sphere_xyz(*[[c] for c in north_of(*ORIGIN, 500.0)])[0]
    assert np.linalg.norm(a - b) == pytest.approx(chord_for_arc(500.0), rel=1e-9)
