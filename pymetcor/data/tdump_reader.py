"""Reader for HYSPLIT tdump trajectory endpoint files.

Parses the ASCII endpoint format into structured records and converts them
into :class:`~pymetcor.core.models.GeoPoint` objects ready for insertion
into a :class:`~pymetcor.core.spatial_grid.SpatialGrid`.

Format (HYSPLIT User's Guide S263):
    - Record #1: number of met grids (and format version)
    - Record #2 (loop): met model id and starting time
    - Record #3: number of trajectories, direction, vertical method
    - Record #4 (loop): start time, latitude, longitude, height
    - Record #5: number and names of diagnostic variables
    - Record #6 (loop): trajectory endpoints with diagnostics

CMC endpoint files (an eight line preamble, a source id record, then
header-delimited blocks of endpoint rows) are read by :func:`read_cmc`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

from pymetcor.core.models import GeoPoint, TrajectoryFileError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Endpoint representation
# ---------------------------------------------------------------------------

class TrajectoryPoint:
    """A single endpoint row with optional diagnostic variables."""

    __slots__ = (
        "traj_id", "grid_id", "year", "month", "day", "hour", "minute",
        "forecast_hour", "age", "lat", "lon", "height", "diag_vars",
    )

    def __init__(
        self,
        traj_id: int,
        grid_id: int,
        year: int,
        month: int,
        day: int,
        hour: int,
        minute: int,
        forecast_hour: float,
        age: float,
        lat: float,
        lon: float,
        height: float,
        diag_vars: dict[str, float] | None = None,
    ):
        self.traj_id = traj_id
        self.grid_id = grid_id
        self.year = year
        self.month = month
        self.day = day
        self.hour = hour
        self.minute = minute
        self.forecast_hour = forecast_hour
        self.age = age
        self.lat = lat
        self.lon = lon
        self.height = height
        self.diag_vars = diag_vars or {}


class TdumpData:
    """Container for parsed tdump file data."""

    def __init__(
        self,
        met_grids: list[dict[str, Any]],
        start_info: list[dict[str, Any]],
        diag_var_names: list[str],
        points: list[TrajectoryPoint],
        direction: str = "BACKWARD",
    ):
        self.met_grids = met_grids
        self.start_info = start_info
        self.diag_var_names = diag_var_names
        self.points = points
        self.direction = direction


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def read_tdump_string(text: str) -> TdumpData:
    """Parse tdump content from a string.

    Raises
    ------
    TrajectoryFileError
        If a header record is missing or malformed.
    """
    lines = [line for line in text.strip().split("\n")]
    idx = 0

    def next_parts(description: str) -> list[str]:
        nonlocal idx
        if idx >= len(lines):
            raise TrajectoryFileError(f"Unexpected end of file while reading {description}")
        parts = lines[idx].split()
        idx += 1
        if not parts:
            raise TrajectoryFileError(f"Blank line where {description} expected (line {idx})")
        return parts

    try:
        # --- Met grids ---
        n_met = int(next_parts("number of met grids")[0])
        met_grids: list[dict[str, Any]] = []
        for _ in range(n_met):
            parts = next_parts("met grid record")
            met_grids.append({
                "model_id": parts[0],
                "year": int(parts[1]),
                "month": int(parts[2]),
                "day": int(parts[3]),
                "hour": int(parts[4]),
                "forecast_hour": int(parts[5]),
            })

        # --- Trajectory start info ---
        parts = next_parts("number of trajectories")
        n_traj = int(parts[0])
        direction = parts[1].upper() if len(parts) > 1 else "BACKWARD"
        start_info: list[dict[str, Any]] = []
        for _ in range(n_traj):
            parts = next_parts("trajectory start record")
            if not _is_number(parts[0]):
                parts = parts[1:]
            start_info.append({
                "year": int(parts[0]),
                "month": int(parts[1]),
                "day": int(parts[2]),
                "hour": int(parts[3]),
                "lat": float(parts[4]),
                "lon": float(parts[5]),
                "height": float(parts[6]),
                "lat_text": parts[4],
                "lon_text": parts[5],
                "height_text": parts[6],
            })

        # --- Diagnostic variable names ---
        diag_line = next_parts("diagnostic variable record")
        n_diag = int(diag_line[0])
        diag_var_names = diag_line[1: 1 + n_diag]
    except (ValueError, IndexError) as exc:
        raise TrajectoryFileError(f"Malformed tdump header at line {idx}: {exc}") from exc

    # --- Data rows ---
    points: list[TrajectoryPoint] = []
    while idx < len(lines):
        line = lines[idx].strip()
        idx += 1
        if not line:
            continue
        parts = line.split()
        try:
            diag: dict[str, float] = {}
            for vi, vn in enumerate(diag_var_names):
                if 12 + vi < len(parts):
                    diag[vn] = float(parts[12 + vi])
            points.append(TrajectoryPoint(
                traj_id=int(parts[0]),
                grid_id=int(parts[1]),
                year=int(parts[2]),
                month=int(parts[3]),
                day=int(parts[4]),
                hour=int(parts[5]),
                minute=int(parts[6]),
                forecast_hour=float(parts[7]),
                age=float(parts[8]),
                lat=float(parts[9]),
                lon=float(parts[10]),
                height=float(parts[11]),
                diag_vars=diag,
            ))
        except (ValueError, IndexError):
            logger.warning("Skipping malformed endpoint row %d: %r", idx, line)

    return TdumpData(
        met_grids=met_grids,
        start_info=start_info,
        diag_var_names=diag_var_names,
        points=points,
        direction=direction,
    )


def read_tdump(filepath: str | Path) -> TdumpData:
    """Parse a tdump text file.

    Raises
    ------
    TrajectoryFileError
        If the file does not exist, cannot be read, or has a bad header.
    """
    path = Path(filepath)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TrajectoryFileError(f"Cannot read trajectory file {path}: {exc}") from exc
    try:
        return read_tdump_string(text)
    except TrajectoryFileError as exc:
        raise TrajectoryFileError(f"{path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Conversion to GeoPoints
# ---------------------------------------------------------------------------

def _full_year(year: int, century_start: int) -> int:
    return year if year >= 100 else century_start + year


def endpoints_to_points(data: TdumpData, century_start: int = 2000) -> Iterator[GeoPoint]:
    """Yield one GeoPoint per endpoint row.

    The aux tag is ``height,lat,lon,lag`` where ``height/lat/lon`` are the
    trajectory's start (receptor) record and ``lag`` is the whole number of
    hours between the endpoint and the trajectory start. Longitudes are
    wrapped into ``[0, 360)``.
    """
    starts = []
    for start in data.start_info:
        when = datetime(_full_year(start["year"], century_start),
                        start["month"], start["day"], start["hour"])
        receptor = f"{start['height_text']},{start['lat_text']},{start['lon_text']}"
        starts.append((when, when.strftime("%Y%m%d%H"), receptor))

    for pt in data.points:
        if not 1 <= pt.traj_id <= len(starts):
            logger.warning("Endpoint references unknown trajectory %d", pt.traj_id)
            continue
        start_time, traj, receptor = starts[pt.traj_id - 1]
        when = datetime(_full_year(pt.year, century_start), pt.month, pt.day, pt.hour)
        lag = int(abs((when - start_time).total_seconds()) // 3600)
        lon = pt.lon + 360.0 if pt.lon < 0 else pt.lon
        yield GeoPoint(lon, pt.lat, traj, f"{receptor},{lag}")


# ---------------------------------------------------------------------------
# CMC endpoint files
# ---------------------------------------------------------------------------

# Lines preceding the source id record
CMC_PREAMBLE_LINES = 8


class CmcData:
    """Container for one parsed CMC endpoint file.

    ``endpoints`` holds ``(lat, lon, aux_tag)`` triples; ``aux_tag`` is the
    fourth field of the block header the row belongs to.
    """

    def __init__(
        self,
        source_id: str,
        endpoints: list[tuple[float, float, str]],
        errors: int = 0,
    ):
        self.source_id = source_id
        self.endpoints = endpoints
        self.errors = errors


def _cmc_source_id(parts: list[str]) -> str:
    # year followed by zero-padded month, day, hour
    return f"{parts[0]}{int(parts[1]):02d}{int(parts[2]):02d}{int(parts[3]):02d}"


def read_cmc_string(text: str, num_columns: int = 9) -> CmcData:
    """Parse CMC endpoint content from a string.

    After an eight line preamble, line nine carries the source id fields
    (year, month, day, hour). The rest of the file is a sequence of blocks:
    a header row with fewer than *num_columns* fields, whose fourth field is
    the aux tag, followed by data rows of at least *num_columns* fields with
    latitude and longitude in the second and third fields.

    Raises
    ------
    TrajectoryFileError
        If the file ends before the source id record or the record is
        malformed.
    """
    lines = text.split("\n")
    if len(lines) <= CMC_PREAMBLE_LINES:
        raise TrajectoryFileError("Unexpected end of file while reading CMC source id")
    try:
        source_id = _cmc_source_id(lines[CMC_PREAMBLE_LINES].split())
    except (ValueError, IndexError) as exc:
        raise TrajectoryFileError(
            f"Malformed CMC source id at line {CMC_PREAMBLE_LINES + 1}: {exc}") from exc

    endpoints: list[tuple[float, float, str]] = []
    errors = 0
    aux_tag = None
    for number, line in enumerate(lines[CMC_PREAMBLE_LINES + 1:], CMC_PREAMBLE_LINES + 2):
        parts = line.split()
        if not parts:
            continue
        if len(parts) < num_columns:
            aux_tag = parts[3] if len(parts) > 3 else ""
            continue
        if aux_tag is None:
            logger.warning("Skipping CMC row %d outside any block: %r", number, line)
            errors += 1
            continue
        try:
            endpoints.append((float(parts[1]), float(parts[2]), aux_tag))
        except ValueError:
            logger.warning("Skipping malformed CMC row %d: %r", number, line)
            errors += 1

    return CmcData(source_id, endpoints, errors)


def read_cmc(filepath: str | Path, num_columns: int = 9) -> CmcData:
    """Parse a CMC endpoint file.

    Raises
    ------
    TrajectoryFileError
        If the file cannot be read or lacks a valid source id record.
    """
    path = Path(filepath)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TrajectoryFileError(f"Cannot read trajectory file {path}: {exc}") from exc
    try:
        return read_cmc_string(text, num_columns)
    except TrajectoryFileError as exc:
        raise TrajectoryFileError(f"{path}: {exc}") from exc


def cmc_to_points(data: CmcData) -> Iterator[GeoPoint]:
    """Yield one GeoPoint per CMC endpoint, longitudes wrapped into ``[0, 360)``."""
    for lat, lon, aux_tag in data.endpoints:
        lon = lon + 360.0 if lon < 0 else lon
        yield GeoPoint(lon, lat, data.source_id, aux_tag)


def load_trajectories(
    grid,
    paths: Iterable[str | Path],
    century_start: int = 2000,
    file_format: str = "tdump",
    cmc_columns: int = 9,
) -> tuple[int, int]:
    """Insert every endpoint of every trajectory file into *grid*.

    Parameters
    ----------
    file_format : {"tdump", "cmc"}
        Layout shared by all of *paths*.
    cmc_columns : int
        Minimum field count of a CMC data row.

    Returns
    -------
    tuple[int, int]
        ``(inserted, rejected)`` endpoint counts.

    Raises
    ------
    ValueError
        If *file_format* is not recognised.
    """
    if file_format not in ("tdump", "cmc"):
        raise ValueError(f"Unknown trajectory format {file_format!r}")
    inserted = rejected = 0
    for path in paths:
        if file_format == "cmc":
            points = cmc_to_points(read_cmc(path, cmc_columns))
        else:
            points = endpoints_to_points(read_tdump(path), century_start)
        ok, bad = grid.insert_all(points)
        logger.debug("%s: %d endpoints inserted, %d outside grid", path, ok, bad)
        inserted += ok
        rejected += bad
    logger.info("Loaded %d endpoints (%d outside grid)", inserted, rejected)
    return inserted, rejected
