"""Station extraction from a GTFS feed archive."""

from __future__ import annotations

import logging
from pathlib import Path
from zipfile import BadZipFile, ZipFile

import pandas as pd

from walkshed.core.errors import InputValidationError

LOGGER = logging.getLogger(__name__)

STOPS_MEMBER = "stops.txt"

# GTFS location_type: 0/blank = stop or platform, 1 = station. Entrances (2),
# generic nodes (3) and boarding areas (4) are not places a resident walks to.
STOP_LOCATION_TYPES = {0, 1}


def read_gtfs_stops(path: Path, *, location_types: set[int] = STOP_LOCATION_TYPES) -> pd.DataFrame:
    """Read `stops.txt` from a GTFS zip and return `{stop_id, stop_name, stop_lat, stop_lon}`.

    - the member may sit in a sub-directory of the archive, but must be unique
    - `stop_id` is read as a string so leading zeros survive
    - stops and parent stations sharing a name are both kept (distinct stop_id)
    """
    path = Path(path)
    try:
        zf = ZipFile(path)
    except (FileNotFoundError, BadZipFile) as exc:
        raise InputValidationError(f"cannot open GTFS feed {path}: {exc}") from exc

    with zf:
        matches = [n for n in zf.namelist() if Path(n).name == STOPS_MEMBER]
        if len(matches) != 1:
            raise InputValidationError(
                f"GTFS feed {path} must contain exactly one {STOPS_MEMBER!r} (found {len(matches)})"
            )
        with zf.open(matches[0]) as handle:
            stops = pd.read_csv(handle, dtype={"stop_id": "string", "parent_station": "string"})

    if "location_type" in stops.columns:
        location = pd.to_numeric(stops["location_type"], errors="coerce").fillna(0).astype(int)
        keep = location.isin(location_types)
        LOGGER.info(
            "GTFS %s: kept %d of %d stops by location_type",
            path.name,
            int(keep.sum()),
            len(stops),
        )
        stops = stops.loc[keep]

    cols = [c for c in ("stop_id", "stop_name", "stop_lat", "stop_lon") if c in stops.columns]
    return stops[cols].reset_index(drop=True)
