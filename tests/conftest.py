from __future__ import annotations

import math
import threading

import numpy as np
import pandas as pd
import pytest

from walkshed.core.config import EARTH_RADIUS_M
from walkshed.core.errors import RoutingTransportError
from walkshed.geo.distance import haversine

ORIGIN = (2.3522, 48.8566)  # Paris, lng/lat


def north_of(lng: float, lat: float, meters: float) -> tuple[float, float]:
    """Point `meters` due north along the meridian on the model sphere."""
    return lng, lat + math.degrees(meters / EARTH_RADIUS_M)


def east_of(lng: float, lat: float, meters: float) -> tuple[float, float]:
    """Point approximately `meters` due east (small offsets only)."""
    return lng + math.degrees(meters / (EARTH_RADIUS_M * math.cos(math.radians(lat)))), lat


class FakeRoutingClient:
    """In-memory stand-in for OsrmClient.

    `distance(origin, destination)` returns the routed value; by default 1.2x the
    great-circle distance. Origins listed in `failing` raise a transport error on
    every call; `flaky` maps origins to the number of calls that fail first.
    """

    def __init__(self, distance=None, *, failing=(), flaky=None) -> None:
        self.distance = distance or (lambda o, d: 1.2 * haversine(*o, *d))
        self.failing = set(failing)
        self.flaky = dict(flaky or {})
        self.calls: list[tuple[tuple[float, float], tuple[tuple[float, float], ...]]] = []
        self.probes: list[tuple[float, float]] = []
        self.closed = False
        self._lock = threading.Lock()

    def table(self, origin, destinations):
        with self._lock:
            self.calls.append((origin, tuple(destinations)))
            if origin in self.flaky and self.flaky[origin] > 0:
                self.flaky[origin] -= 1
                raise RoutingTransportError("simulated timeout")
        if origin in self.failing:
            raise RoutingTransportError("simulated timeout")
        return np.array([self.distance(origin, d) for d in destinations], dtype=float)

    def check_available(self, probe):
        self.probes.append(probe)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stations() -> pd.DataFrame:
    s1 = ORIGIN
    s2 = east_of(*ORIGIN, 2_000)
    s3 = north_of(*ORIGIN, 10_000)
    return pd.DataFrame(
        {
            "stop_id": ["S1", "S2", "S3", "S1b"],
            # S1 and S1b are two platforms of the same named stop
            "stop_name": ["Chatelet", "Louvre", "Nord", "Chatelet"],
            "longitude": [s1[0], s2[0], s3[0], s1[0] + 0.0001],
            "latitude": [s1[1], s2[1], s3[1], s1[1]],
        }
    )


@pytest.fixture
def points() -> pd.DataFrame:
    coords = [
        north_of(*ORIGIN, 100),  # near S1 and S1b
        north_of(*ORIGIN, 400),  # near S1 and S1b
        north_of(*ORIGIN, 600),  # beyond 500 m of S1
        east_of(*ORIGIN, 1_800),  # near S2
        north_of(*ORIGIN, 5_000),  # far from everything
    ]
    return pd.DataFrame(
        {
            "id": [f"p{i}" for i in range(len(coords))],
            "lng": [c[0] for c in coords],
            "lat": [c[1] for c in coords],
        }
    )


def brute_force_pairs(
    points: pd.DataFrame, stations: pd.DataFrame, threshold_m: float
) -> set[tuple[str, str]]:
    """Reference O(n*m) coarse join."""
    out = set()
    for p in points.itertuples(index=False):
        for s in stations.itertuples(index=False):
            if haversine(p.lng, p.lat, s.longitude, s.latitude) <= threshold_m:
                out.add((str(p.id), str(s.stop_id)))
    return out


def random_frames(n_points: int, n_stations: int, seed: int = 7):
    """Random points/stations in a ~5 km box so many pairs sit near the threshold."""
    rng = np.random.default_rng(seed)
    lng0, lat0 = ORIGIN
    points = pd.DataFrame(
        {
            "id": [f"r{i}" for i in range(n_points)],
            "lng": lng0 + rng.uniform(-0.03, 0.03, n_points),
            "lat": lat0 + rng.uniform(-0.02, 0.02, n_points),
        }
    )
    stations = pd.DataFrame(
        {
            "stop_id": [f"s{i}" for i in range(n_stations)],
            "stop_name": [f"stop {i % 5}" for i in range(n_stations)],
            "longitude": lng0 + rng.uniform(-0.03, 0.03, n_stations),
            "latitude": lat0 + rng.uniform(-0.02, 0.02, n_stations),
        }
    )
    return points, stations
