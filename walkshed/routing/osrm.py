"""Client for the OSRM `table` service (one origin, many destinations).

Request shape:
  GET {base_url}/table/v1/{profile}/{lng,lat;lng,lat;...}
      ?sources=0&destinations=1;2;...;k&annotations=distance

The response carries a `1 x k` matrix under `distances` (or `durations`) whose
columns follow the order of the destinations in the request. `null` cells mean
no path was found and are returned as +inf.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence

import numpy as np
import requests

from walkshed import __version__
from walkshed.core.errors import (
    RoutingDataError,
    RoutingRequestError,
    RoutingTransportError,
    RoutingUnavailableError,
)

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
# OSRM codes meaning "the engine works, but no path exists for these coordinates".
NO_PATH_CODES = {"NoSegment", "NoTable", "NoRoute"}
MEASURES = ("distance", "duration")

Coordinate = tuple[float, float]


def format_coordinates(coords: Sequence[Coordinate]) -> str:
    return ";".join(f"{lng:.6f},{lat:.6f}" for lng, lat in coords)


def _is_row_matrix(matrix, k: int) -> bool:
    return (
        isinstance(matrix, list)
        and len(matrix) == 1
        and isinstance(matrix[0], list)
        and len(matrix[0]) == k
    )


def _cell(value) -> float:
    if value is None:
        return math.inf
    value = float(value)
    return value if math.isfinite(value) else math.inf


class OsrmClient:
    """Blocking OSRM client; safe to share across threads (one session per thread)."""

    def __init__(
        self,
        base_url: str,
        *,
        profile: str = "foot",
        measure: str = "distance",
        timeout_s: float = 30.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        if measure not in MEASURES:
            raise ValueError(f"measure must be one of {MEASURES}, got {measure!r}")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.measure = measure
        self.timeout_s = timeout_s
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update({"User-Agent": f"walkshed/{__version__}"})
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        """Close the HTTP sessions opened by worker threads."""
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

    def table_url(self, origin: Coordinate, destinations: Sequence[Coordinate]) -> str:
        coords = format_coordinates([origin, *destinations])
        dest_idx = ";".join(str(i) for i in range(1, len(destinations) + 1))
        return (
            f"{self.base_url}/table/v1/{self.profile}/{coords}"
            f"?sources=0&destinations={dest_idx}&annotations={self.measure}"
        )

    def _get(self, url: str) -> requests.Response:
        try:
            resp = self._session().get(url, timeout=self.timeout_s)
        except requests.exceptions.RequestException as exc:
            raise RoutingTransportError(f"{type(exc).__name__}: {exc}") from exc
        if resp.status_code in RETRYABLE_STATUSES:
            raise RoutingTransportError(f"HTTP {resp.status_code} from routing engine")
        return resp

    def table(self, origin: Coordinate, destinations: Sequence[Coordinate]) -> np.ndarray:
        """Return the path distance (or duration) from `origin` to each destination.

        Raises RoutingTransportError (retryable), RoutingDataError (no path) or
        RoutingRequestError (request rejected).
        """
        if not destinations:
            return np.empty(0, dtype=float)

        resp = self._get(self.table_url(origin, destinations))
        try:
            body = resp.json()
        except ValueError as exc:
            raise RoutingTransportError(
                f"non-JSON response (HTTP {resp.status_code}): {resp.text[:200]!r}"
            ) from exc

        code = body.get("code") if isinstance(body, dict) else None
        if code != "Ok":
            message = body.get("message", "") if isinstance(body, dict) else ""
            if code in NO_PATH_CODES:
                raise RoutingDataError(f"{code}: {message}", code=code)
            raise RoutingRequestError(f"routing engine rejected request: {code}: {message}")

        matrix = body.get(f"{self.measure}s")
        if not _is_row_matrix(matrix, len(destinations)):
            raise RoutingTransportError(
                f"unexpected {self.measure} matrix {str(matrix)[:200]}; "
                f"expected 1 x {len(destinations)}"
            )
        return np.array([_cell(v) for v in matrix[0]], dtype=float)

    def check_available(self, probe: Coordinate) -> None:
        """Fail fast if the routing engine cannot be reached at all."""
        lng, lat = probe
        url = f"{self.base_url}/nearest/v1/{self.profile}/{lng:.6f},{lat:.6f}"
        try:
            resp = self._get(url)
        except RoutingTransportError as exc:
            raise RoutingUnavailableError(
                f"routing engine at {self.base_url} is unreachable: {exc}"
            ) from exc
        if resp.status_code >= 400:
            LOGGER.warning(
                "Routing engine reachable but probe returned HTTP %d: %s",
                resp.status_code,
                resp.text[:200],
            )
        LOGGER.info("Routing engine reachable at %s (profile=%s)", self.base_url, self.profile)
