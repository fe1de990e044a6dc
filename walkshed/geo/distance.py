"""Great-circle distance on a sphere (scalar and vectorised forms).

The distance is the central angle of the spherical law of cosines

    d = R * acos(cos(lat1) cos(lat2) cos(lng2 - lng1) + sin(lat1) sin(lat2))

evaluated in its haversine form

    d = 2R * asin(sqrt(sin^2(dlat / 2) + cos(lat1) cos(lat2) sin^2(dlng / 2)))

which is the same quantity but keeps full precision at walking-scale distances
(the `acos` form loses ~0.1 m near zero) and gives exactly 0 for coincident points.
The `asin` argument is clamped to [0, 1] so near-antipodal pairs cannot yield NaN.
Inputs are degrees; `R` defaults to the equatorial radius `EARTH_RADIUS_M`.
"""

from __future__ import annotations

import math

import numpy as np

from walkshed.core.config import EARTH_RADIUS_M


def haversine(
    lng1: float,
    lat1: float,
    lng2: float,
    lat2: float,
    *,
    radius_m: float = EARTH_RADIUS_M,
) -> float:
    """Great-circle distance in meters between two WGS84 points given in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlam = math.radians(lng2 - lng1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return 2.0 * radius_m * math.asin(math.sqrt(min(1.0, max(0.0, h))))


def haversine_np(
    lng1,
    lat1,
    lng2,
    lat2,
    *,
    radius_m: float = EARTH_RADIUS_M,
) -> np.ndarray:
    """Vectorised `haversine` over broadcastable arrays; returns meters as float64."""
    phi1 = np.radians(np.asarray(lat1, dtype=float))
    phi2 = np.radians(np.asarray(lat2, dtype=float))
    dphi = phi2 - phi1
    dlam = np.radians(np.asarray(lng2, dtype=float) - np.asarray(lng1, dtype=float))
    h = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlam / 2) ** 2
    return 2.0 * radius_m * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def latitude_band_deg(threshold_m: float, *, radius_m: float = EARTH_RADIUS_M) -> float:
    """Largest latitude difference (degrees) two points within `threshold_m` can have."""
    return math.degrees(threshold_m / radius_m)


def unit_sphere_xyz(lng, lat) -> np.ndarray:
    """Map degrees to Cartesian coordinates on the unit sphere, shape (n, 3)."""
    lam = np.radians(np.asarray(lng, dtype=float))
    phi = np.radians(np.asarray(lat, dtype=float))
    cos_phi = np.cos(phi)
    return np.column_stack([cos_phi * np.cos(lam), cos_phi * np.sin(lam), np.sin(phi)])


def chord_for_arc(arc_m: float, *, radius_m: float = EARTH_RADIUS_M) -> float:
    """Unit-sphere chord length subtending a surface arc of `arc_m` meters."""
    theta = min(arc_m / radius_m, math.pi)
    return 2.0 * math.sin(theta / 2.0)
