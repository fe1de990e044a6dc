"""Common CLI utilities for the walkshed commands."""

from __future__ import annotations

import argparse
import time
from pathlib import Path
from typing import Any


def create_base_parser(description: str) -> argparse.ArgumentParser:
    return argparse.ArgumentParser(prog="walkshed", description=description)


def add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings file (default: config/pipeline.yaml when present).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Recompute outputs even if cached files exist.",
    )
    parser.add_argument(
        "--checkpoint",
        action="store_true",
        help="Record sha256 hashes of written outputs in the run summary.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging.")


def add_input_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--points", type=Path, help="Directory of points_*.parquet files, or a single file."
    )
    parser.add_argument(
        "--stations", type=Path, help="Station table (CSV/parquet) or GTFS feed (.zip)."
    )
    parser.add_argument(
        "--candidates", type=Path, help="Where to write/reuse the coarse candidate table."
    )


def add_coarse_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--coarse-threshold", type=float, help="Great-circle radius (m).")
    parser.add_argument(
        "--engine", choices=("duckdb", "kdtree"), help="Coarse filter engine."
    )
    parser.add_argument("--threads", type=int, help="DuckDB worker threads.")


def add_routing_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fine-threshold", type=float, help="Routed distance threshold.")
    parser.add_argument("--osrm-url", help="Routing engine base URL.")
    parser.add_argument("--profile", help="Routing profile (e.g. foot).")
    parser.add_argument("--measure", choices=("distance", "duration"))
    parser.add_argument("--workers", type=int, help="Routing worker-pool width.")
    parser.add_argument("--timeout", type=float, help="Per-call timeout in seconds.")
    parser.add_argument("--retries", type=int, help="Retries per routing group.")
    parser.add_argument(
        "--skip-check",
        action="store_true",
        help="Skip the routing engine reachability check.",
    )
    parser.add_argument("--output", type=Path, help="Result table path (.parquet or .csv).")
    parser.add_argument("--summary", type=Path, help="Run summary JSON path.")


class RunStats:
    """Simple container for collecting statistics and stage timings across a run."""

    def __init__(self) -> None:
        self.stats: dict[str, Any] = {}
        self.completed_steps: list[str] = []
        self.timings: dict[str, float] = {}
        self._started: dict[str, float] = {}

    def update(self, step_stats: dict[str, Any]) -> None:
        self.stats.update(step_stats)

    def start(self, step_name: str) -> None:
        self._started[step_name] = time.perf_counter()

    def add_step(self, step_name: str) -> None:
        started = self._started.pop(step_name, None)
        if started is not None:
            self.timings[step_name] = round(time.perf_counter() - started, 3)
        self.completed_steps.append(step_name)

    def get_summary(self) -> dict[str, Any]:
        return {
            "completed_steps": self.completed_steps,
            "step_count": len(self.completed_steps),
            "elapsed_s": dict(self.timings),
            **self.stats,
        }
