"""`walkshed` command line.

Run:
  walkshed generate-points --boundary data/raw/countries.gpkg --country France
  walkshed coarse --points data/raw/points --stations data/raw/stations.csv
  walkshed run --osrm-url http://localhost:5000 --workers 32
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from walkshed.core.cli_utils import (
    add_coarse_flags,
    add_common_flags,
    add_input_flags,
    add_routing_flags,
    create_base_parser,
)
from walkshed.core.config import configure_logging
from walkshed.core.errors import WalkshedError
from walkshed.core.settings import PipelineSettings, load_settings

LOGGER = logging.getLogger("walkshed")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = create_base_parser("Residents within walking distance of transit stations.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Coarse + fine filter, write the result table.")
    add_common_flags(run)
    add_input_flags(run)
    add_coarse_flags(run)
    add_routing_flags(run)

    coarse = sub.add_parser("coarse", help="Great-circle prefilter only; write candidate pairs.")
    add_common_flags(coarse)
    add_input_flags(coarse)
    add_coarse_flags(coarse)

    gen = sub.add_parser("generate-points", help="Sample random resident points in a country.")
    add_common_flags(gen)
    gen.add_argument("--boundary", type=Path, help="Country boundary file (any OGR format).")
    gen.add_argument("--country", help="Country name to sample inside.")
    gen.add_argument("--n-batches", type=int)
    gen.add_argument("--batch-size", type=int)
    gen.add_argument("--seed", type=int)
    gen.add_argument("--output-dir", type=Path, help="Directory for points_<i>.parquet.")

    return parser.parse_args(argv)


def _settings_from_args(args: argparse.Namespace) -> PipelineSettings:
    settings = load_settings(args.config)

    def get(name: str):
        return getattr(args, name, None)

    overrides = {
        "paths": {
            "points": get("points") or get("output_dir"),
            "stations": get("stations"),
            "candidates": get("candidates"),
            "output": get("output"),
            "summary": get("summary"),
        },
        "coarse": {
            "threshold_m": get("coarse_threshold"),
            "engine": get("engine"),
            "threads": get("threads"),
        },
        "routing": {
            "threshold_m": get("fine_threshold"),
            "base_url": get("osrm_url"),
            "profile": get("profile"),
            "measure": get("measure"),
            "workers": get("workers"),
            "timeout_s": get("timeout"),
            "retries": get("retries"),
            "check_available": False if get("skip_check") else None,
        },
        "sampling": {
            "boundary": get("boundary"),
            "country": get("country"),
            "n_batches": get("n_batches"),
            "batch_size": get("batch_size"),
            "seed": get("seed"),
        },
    }
    return settings.with_overrides(overrides)


def _run(settings: PipelineSettings, args: argparse.Namespace) -> None:
    from walkshed.pipeline import run_pipeline

    outputs = run_pipeline(settings, force=args.force, checkpoint=args.checkpoint)
    LOGGER.info(
        "%d of %d points within reach of a station (%d routing groups failed)",
        outputs.summary.get("n_points_with_access", 0),
        outputs.summary.get("n_points", 0),
        outputs.summary.get("n_groups_failed", 0),
    )


def _coarse(settings: PipelineSettings, args: argparse.Namespace) -> None:
    from walkshed.pipeline import StationAccessProcessor

    processor = StationAccessProcessor(settings, force=args.force)
    try:
        processor.load_datasets().coarse_filter()
    finally:
        processor.close()


def _generate(settings: PipelineSettings, args: argparse.Namespace) -> None:
    from walkshed.geo.sampling import generate_random_points, load_country_polygon

    s = settings.sampling
    if s.boundary is None:
        raise WalkshedError("generate-points needs --boundary (or sampling.boundary in config)")
    polygon = load_country_polygon(s.boundary, s.country)
    generate_random_points(
        polygon,
        settings.paths.points,
        n_batches=s.n_batches,
        batch_size=s.batch_size,
        seed=s.seed,
    )


COMMANDS = {"run": _run, "coarse": _coarse, "generate-points": _generate}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        settings = _settings_from_args(args)
        COMMANDS[args.command](settings, args)
    except WalkshedError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc)
        return 1
    except KeyboardInterrupt:
        LOGGER.error("Interrupted; partial results discarded")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
