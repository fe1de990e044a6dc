"""Station-access pipeline: PointStore -> CoarseFilter -> FineFilter -> ResultTable.

Outputs:
- candidate pairs (parquet, reused on later runs unless forced)
- result table `{point_id, stop_id, path_distance_m}` (parquet or CSV)
- `<output>.failures.csv` listing routing groups that failed terminally
- run summary JSON
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from walkshed.core.cli_utils import RunStats
from walkshed.core.settings import PipelineSettings
from walkshed.geo.coarse import CANDIDATE_COLUMNS, coarse_filter
from walkshed.geo.store import PointStore
from walkshed.io import (
    cached,
    point_files,
    read_json,
    read_table,
    sha256_file,
    write_json,
    write_table,
)
from walkshed.models.schemas import CANDIDATE_PAIRS
from walkshed.models.validate import validate_df
from walkshed.routing.fine import DistanceMatrixClient, FineFilter, FineFilterResult
from walkshed.routing.osrm import OsrmClient

LOGGER = logging.getLogger(__name__)


def failures_path(output: Path) -> Path:
    return output.with_name(output.stem + ".failures.csv")


def candidates_meta_path(candidates: Path | None) -> Path | None:
    if candidates is None:
        return None
    return candidates.with_name(candidates.name + ".meta.json")


def check_results(
    candidates: pd.DataFrame, results: pd.DataFrame, *, threshold: float
) -> None:
    """Result rows must come from candidate pairs and clear the fine threshold."""
    over = results["path_distance_m"] > threshold
    if over.any():
        raise RuntimeError(f"{int(over.sum())} result rows exceed the fine threshold {threshold}")
    keys = candidates[["point_id", "stop_id"]].drop_duplicates()
    merged = results[["point_id", "stop_id"]].merge(keys, how="left", indicator=True)
    invented = merged["_merge"] == "left_only"
    if invented.any():
        sample = merged.loc[invented, ["point_id", "stop_id"]].head(5).to_dict(orient="records")
        raise RuntimeError(f"result pairs missing from candidate pairs (e.g. {sample})")


def input_fingerprint(points: Path, stations: Path) -> dict[str, object]:
    """Identify the input contents a candidate table was built from.

    Point batches are large, so they are tracked by size and mtime; the station
    table is hashed.
    """
    files = []
    for f in point_files(points):
        st = f.stat()
        files.append([str(f), st.st_size, st.st_mtime_ns])
    return {"points_files": files, "stations_sha256": sha256_file(Path(stations))}


def access_summary(results: pd.DataFrame, n_points: int) -> dict[str, float | int]:
    n_with_access = int(results["point_id"].nunique())
    return {
        "n_points_with_access": n_with_access,
        "share_points_with_access": float(n_with_access / n_points) if n_points else 0.0,
        "n_stations_reached": int(results["stop_id"].nunique()),
    }


@dataclass
class RunOutputs:
    candidates: pd.DataFrame
    fine: FineFilterResult | None
    summary: dict[str, object]


class StationAccessProcessor:
    """Fluent interface for the two-phase walking-distance join."""

    def __init__(
        self,
        settings: PipelineSettings,
        *,
        client: DistanceMatrixClient | None = None,
        force: bool = False,
        checkpoint: bool = False,
        progress: bool = True,
    ) -> None:
        self.settings = settings
        self.client = client
        self.force = force
        self.checkpoint = checkpoint
        self.progress = progress
        self.stats = RunStats()
        self.store: PointStore | None = None
        self.candidates: pd.DataFrame | None = None
        self.fine: FineFilterResult | None = None
        self.written: list[Path] = []

    def setup(self):
        """Log the run parameters and build the routing client."""
        s = self.settings
        LOGGER.info("Starting station access run with:")
        LOGGER.info("  Points: %s", s.paths.points)
        LOGGER.info("  Stations: %s", s.paths.stations)
        LOGGER.info(
            "  Coarse: %.0f m (%s, R=%.0f m)",
            s.coarse.threshold_m,
            s.coarse.engine,
            s.coarse.earth_radius_m,
        )
        LOGGER.info(
            "  Fine: %.0f (%s/%s via %s, %d workers)",
            s.routing.threshold_m,
            s.routing.profile,
            s.routing.measure,
            s.routing.base_url,
            s.routing.workers,
        )
        if self.client is None:
            self.client = OsrmClient(
                s.routing.base_url,
                profile=s.routing.profile,
                measure=s.routing.measure,
                timeout_s=s.routing.timeout_s,
            )
        return self

    def load_datasets(self):
        """Load points and stations into the PointStore (fatal on invalid input)."""
        self.stats.start("load")
        self.store = PointStore.from_files(
            self.settings.paths.points,
            self.settings.paths.stations,
            threads=self.settings.coarse.threads,
        )
        self.stats.update(
            {"n_points": self.store.n_points, "n_stations": self.store.n_stations}
        )
        self.stats.add_step("load")
        return self

    def coarse_filter(self):
        """Great-circle prefilter; the candidate table is cached for audit and reuse."""
        self.stats.start("coarse")
        c = self.settings.coarse

        def _build() -> pd.DataFrame:
            return coarse_filter(
                self.store,
                threshold_m=c.threshold_m,
                radius_m=c.earth_radius_m,
                engine=c.engine,
            )

        def _read(path: Path) -> pd.DataFrame:
            return validate_df(
                read_table(path, dtype={"point_id": "string", "stop_id": "string"}),
                CANDIDATE_PAIRS,
            )

        meta = {
            "threshold_m": c.threshold_m,
            "earth_radius_m": c.earth_radius_m,
            "points": str(self.settings.paths.points),
            "stations": str(self.settings.paths.stations),
            **input_fingerprint(self.settings.paths.points, self.settings.paths.stations),
        }
        meta_path = candidates_meta_path(self.settings.paths.candidates)

        def _write(df: pd.DataFrame, path: Path) -> None:
            write_table(df, path)
            write_json(meta, candidates_meta_path(path))

        def _valid(df: pd.DataFrame) -> bool:
            if meta_path is None or not meta_path.exists() or read_json(meta_path) != meta:
                LOGGER.info("Cached candidate pairs were built from other inputs; rebuilding")
                return False
            return all(col in df.columns for col in CANDIDATE_COLUMNS)

        self.candidates, used_cache = cached(
            self.settings.paths.candidates,
            force=self.force,
            read=_read,
            build=_build,
            write=_write,
            validate=_valid,
        )
        if used_cache:
            LOGGER.info("Reused candidate pairs from %s", self.settings.paths.candidates)
        elif self.settings.paths.candidates is not None:
            self.written.append(self.settings.paths.candidates)

        self.stats.update(
            {
                "n_candidate_pairs": int(len(self.candidates)),
                "n_candidate_points": int(self.candidates["point_id"].nunique()),
                "candidates_from_cache": bool(used_cache),
            }
        )
        self.stats.add_step("coarse")
        return self

    def fine_filter(self):
        """Routed-distance refinement, one request per candidate point."""
        self.stats.start("fine")
        r = self.settings.routing
        try:
            if r.check_available and not self.candidates.empty:
                probe = self.candidates.iloc[0]
                self.client.check_available(
                    (float(probe["stop_lng"]), float(probe["stop_lat"]))
                )

            self.fine = FineFilter(
                self.client,
                threshold_m=r.threshold_m,
                workers=r.workers,
                retries=r.retries,
                backoff_min_s=r.backoff_min_s,
                backoff_max_s=r.backoff_max_s,
                progress=self.progress,
            ).run(self.candidates)
        finally:
            self.client.close()

        check_results(self.candidates, self.fine.results, threshold=r.threshold_m)
        self.stats.update(self.fine.stats)
        self.stats.update(access_summary(self.fine.results, self.stats.stats.get("n_points", 0)))
        self.stats.add_step("fine")
        return self

    def write_outputs(self):
        """Write the result table, failure table and run summary."""
        paths = self.settings.paths
        write_table(self.fine.results, paths.output)
        self.written.append(paths.output)
        LOGGER.info("Wrote %s (%d rows)", paths.output, len(self.fine.results))

        fail_path = failures_path(paths.output)
        if not self.fine.failures.empty:
            write_table(self.fine.failures, fail_path)
            self.written.append(fail_path)
            LOGGER.warning(
                "%d routing groups failed; see %s", len(self.fine.failures), fail_path
            )
        elif fail_path.exists():
            fail_path.unlink()

        summary = self.summary()
        if self.checkpoint:
            summary["checkpoint"] = {str(p): sha256_file(p) for p in self.written if p.exists()}
        write_json(summary, paths.summary)
        LOGGER.info("Wrote %s", paths.summary)
        return self

    def summary(self) -> dict[str, object]:
        s = self.settings
        return {
            **self.stats.get_summary(),
            "coarse_threshold_m": s.coarse.threshold_m,
            "fine_threshold": s.routing.threshold_m,
            "measure": s.routing.measure,
            "engine": s.coarse.engine,
            "earth_radius_m": s.coarse.earth_radius_m,
            "output": str(s.paths.output),
        }

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None

    def complete(self) -> RunOutputs:
        """Close the store and return the in-memory outputs."""
        self.close()
        summary = self.summary()
        LOGGER.info("Station access run completed: %s", summary)
        return RunOutputs(candidates=self.candidates, fine=self.fine, summary=summary)


def run_pipeline(
    settings: PipelineSettings,
    *,
    client: DistanceMatrixClient | None = None,
    force: bool = False,
    checkpoint: bool = False,
    progress: bool = True,
) -> RunOutputs:
    processor = StationAccessProcessor(
        settings, client=client, force=force, checkpoint=checkpoint, progress=progress
    )
    try:
        return (
            processor.setup()
            .load_datasets()
            .coarse_filter()
            .fine_filter()
            .write_outputs()
            .complete()
        )
    finally:
        processor.close()
