"""Fine filter: routed path distance for every coarse candidate, one request per resident.

Per routing group (one origin point and all its candidate stations):

    PENDING -> REQUESTED -> SUCCEEDED
                         -> FAILED_RETRYABLE -> REQUESTED ...
                         -> FAILED (terminal, after the retry budget or a rejected request)

Terminal failures are excluded from the result table, logged, and returned in the
failure table. Unreachable destinations (no path) are dropped as "not within reach".
"""

from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import numpy as np
import pandas as pd
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tqdm import tqdm

from walkshed.core.config import FINE_THRESHOLD_M
from walkshed.core.errors import (
    InputValidationError,
    RoutingDataError,
    RoutingRequestError,
    RoutingTransportError,
)
from walkshed.models.schemas import CANDIDATE_PAIRS, RESULTS, ROUTING_FAILURES
from walkshed.models.validate import validate_df

LOGGER = logging.getLogger(__name__)

COORD_COLUMNS = ("point_lng", "point_lat", "stop_lng", "stop_lat")


class DistanceMatrixClient(Protocol):
    def table(
        self, origin: tuple[float, float], destinations: Sequence[tuple[float, float]]
    ) -> np.ndarray: ...

    def check_available(self, probe: tuple[float, float]) -> None: ...

    def close(self) -> None: ...

class GroupStatus(str, Enum):
    PENDING = "pending"
    REQUESTED = "requested"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED = "failed"


@dataclass(frozen=True)
class RoutingGroup:
    """One origin point and its candidate destinations, in request order."""

    point_id: str
    origin: tuple[float, float]
    stop_ids: tuple[str, ...]
    destinations: tuple[tuple[float, float], ...]


@dataclass
class GroupOutcome:
    point_id: str
    n_candidates: int
    status: GroupStatus = GroupStatus.PENDING
    attempts: int = 0
    rows: list[tuple[str, str, float]] = field(default_factory=list)
    n_unreachable: int = 0
    unroutable: bool = False
    error: str | None = None


@dataclass(frozen=True)
class FineFilterResult:
    results: pd.DataFrame
    failures: pd.DataFrame
    stats: dict[str, int]


def _transition(outcome: GroupOutcome, status: GroupStatus) -> None:
    LOGGER.debug("Group %s: %s -> %s", outcome.point_id, outcome.status.value, status.value)
    outcome.status = status


def build_groups(candidates: pd.DataFrame) -> list[RoutingGroup]:
    """Group CandidatePair rows by point_id (one routing request per resident)."""
    missing = [c for c in COORD_COLUMNS if c not in candidates.columns]
    if missing:
        raise InputValidationError(f"candidate pairs lack coordinate columns {missing}")
    cands = validate_df(candidates, CANDIDATE_PAIRS)

    groups: list[RoutingGroup] = []
    for point_id, g in cands.groupby("point_id", sort=True):
        groups.append(
            RoutingGroup(
                point_id=str(point_id),
                origin=(float(g["point_lng"].iloc[0]), float(g["point_lat"].iloc[0])),
                stop_ids=tuple(g["stop_id"].astype(str)),
                destinations=tuple(
                    zip(g["stop_lng"].astype(float), g["stop_lat"].astype(float), strict=True)
                ),
            )
        )
    return groups


class FineFilter:
    """Route every group through `client` on a worker pool and keep pairs within threshold."""

    def __init__(
        self,
        client: DistanceMatrixClient,
        *,
        threshold_m: float = FINE_THRESHOLD_M,
        workers: int | None = None,
        retries: int = 3,
        backoff_min_s: float = 0.5,
        backoff_max_s: float = 10.0,
        progress: bool = True,
    ) -> None:
        if threshold_m <= 0:
            raise InputValidationError(f"fine threshold must be positive, got {threshold_m}")
        if retries < 0:
            raise InputValidationError(f"retries must be >= 0, got {retries}")
        self.client = client
        self.threshold_m = float(threshold_m)
        self.workers = int(os.cpu_count() or 1) if workers is None else int(workers)
        if self.workers <= 0:
            raise InputValidationError(f"workers must be positive, got {workers}")
        self.retries = int(retries)
        self.backoff_min_s = float(backoff_min_s)
        self.backoff_max_s = float(backoff_max_s)
        self.progress = progress

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(RoutingTransportError),
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(
                multiplier=self.backoff_min_s, min=self.backoff_min_s, max=self.backoff_max_s
            ),
            before_sleep=before_sleep_log(LOGGER, logging.DEBUG),
            reraise=True,
        )

    def route_group(self, group: RoutingGroup) -> GroupOutcome:
        outcome = GroupOutcome(point_id=group.point_id, n_candidates=len(group.stop_ids))
        try:
            for attempt in self._retrying():
                with attempt:
                    if outcome.attempts:
                        _transition(outcome, GroupStatus.FAILED_RETRYABLE)
                    outcome.attempts = attempt.retry_state.attempt_number
                    _transition(outcome, GroupStatus.REQUESTED)
                    values = self.client.table(group.origin, group.destinations)
        except (RoutingTransportError, RoutingRequestError) as exc:
            _transition(outcome, GroupStatus.FAILED)
            outcome.error = str(exc)
            return outcome
        except RoutingDataError as exc:
            LOGGER.debug("No path for point %s: %s", group.point_id, exc)
            _transition(outcome, GroupStatus.SUCCEEDED)
            outcome.unroutable = True
            outcome.n_unreachable = outcome.n_candidates
            return outcome

        values = np.asarray(values, dtype=float)
        if values.shape != (len(group.stop_ids),):
            _transition(outcome, GroupStatus.FAILED)
            outcome.error = f"expected {len(group.stop_ids)} values, got shape {values.shape}"
            return outcome

        _transition(outcome, GroupStatus.SUCCEEDED)
        for stop_id, value in zip(group.stop_ids, values, strict=True):
            if not math.isfinite(value):
                outcome.n_unreachable += 1
            elif value <= self.threshold_m:
                outcome.rows.append((group.point_id, stop_id, float(value)))
        return outcome

    def run(self, candidates: pd.DataFrame) -> FineFilterResult:
        t0 = time.perf_counter()
        groups = build_groups(candidates)
        LOGGER.info(
            "Fine filter: %d candidate pairs in %d routing groups, %d workers",
            len(candidates),
            len(groups),
            self.workers,
        )

        outcomes: list[GroupOutcome] = []
        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="routing")
        try:
            futures = [executor.submit(self.route_group, g) for g in groups]
            for fut in tqdm(
                as_completed(futures),
                total=len(futures),
                desc="routing",
                unit="group",
                disable=not self.progress,
            ):
                outcome = fut.result()
                if outcome.status is GroupStatus.FAILED:
                    LOGGER.warning(
                        "Routing group %s failed after %d attempt(s): %s",
                        outcome.point_id,
                        outcome.attempts,
                        outcome.error,
                    )
                outcomes.append(outcome)
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        result = self._merge(outcomes)
        LOGGER.info(
            "Fine filter: %d pairs within %.0f, %d groups failed, %d unroutable in %.1fs",
            len(result.results),
            self.threshold_m,
            result.stats["n_groups_failed"],
            result.stats["n_groups_unroutable"],
            time.perf_counter() - t0,
        )
        return result

    def _merge(self, outcomes: list[GroupOutcome]) -> FineFilterResult:
        rows = [row for o in outcomes for row in o.rows]
        results = pd.DataFrame(rows, columns=list(RESULTS.required_columns))
        results = (
            results.drop_duplicates(subset=["point_id", "stop_id"])
            .sort_values(["point_id", "stop_id"], kind="mergesort")
            .reset_index(drop=True)
        )
        results = validate_df(results, RESULTS)

        failed = [o for o in outcomes if o.status is GroupStatus.FAILED]
        failures = pd.DataFrame(
            {
                "point_id": [o.point_id for o in failed],
                "n_candidates": [o.n_candidates for o in failed],
                "attempts": [o.attempts for o in failed],
                "error": [o.error for o in failed],
            }
        )
        failures = validate_df(
            failures.sort_values("point_id", kind="mergesort").reset_index(drop=True),
            ROUTING_FAILURES,
        )

        stats = {
            "n_groups": len(outcomes),
            "n_groups_succeeded": sum(o.status is GroupStatus.SUCCEEDED for o in outcomes),
            "n_groups_failed": len(failed),
            "n_groups_unroutable": sum(o.unroutable for o in outcomes),
            "n_requests": sum(o.attempts for o in outcomes),
            "n_pairs_unreachable": sum(o.n_unreachable for o in outcomes),
            "n_pairs_failed": sum(o.n_candidates for o in failed),
            "n_results": len(results),
        }
        return FineFilterResult(results=results, failures=failures, stats=stats)
