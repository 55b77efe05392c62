"""Correlated concentration data: reading, thresholds and endpoint tagging.

The correlated-data file is a whitespace (or tab) separated table::

    IDATE     ITIME FDATE     FTIME LATR    LONR     SO4   NO3
    THRESH    2.5   1.1
    20130101  0000  20130102  0000  45.434  -75.676  3.10  0.80

``IDATE/ITIME`` and ``FDATE/FTIME`` bound the sampling window (``YYYYMMDD``
and ``HHMM``), ``LATR/LONR`` locate the receptor, and each remaining column
is one pollutant. An optional ``THRESH`` row supplies per-pollutant
thresholds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from pymetcor.core.models import CorrelatedDataError, DataValue, THRESHOLD_METHODS

logger = logging.getLogger(__name__)

HEADER_COLUMNS = ("IDATE", "ITIME", "FDATE", "FTIME", "LATR", "LONR")

_SPLIT_RE = re.compile(r"[\s,]+")


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class CorrelatedSample:
    """One sampling window measured at a receptor."""

    start: datetime
    end: datetime
    receptor_lat: str
    receptor_lon: str
    values: list[float]


@dataclass
class CorrelatedData:
    """Parsed correlated-data table."""

    pollutants: list[str]
    samples: list[CorrelatedSample] = field(default_factory=list)
    file_thresholds: Optional[list[float]] = None

    def column(self, index: int) -> np.ndarray:
        return np.array([s.values[index] for s in self.samples], dtype=np.float64)

    def select(self, names: Sequence[str]) -> "CorrelatedData":
        """Restrict the table to the pollutants in *names*, in that order.

        Raises
        ------
        CorrelatedDataError
            If a requested pollutant is not a column of the table.
        """
        if not names:
            return self
        lookup = {name.upper(): k for k, name in enumerate(self.pollutants)}
        try:
            picked = [lookup[name.upper()] for name in names]
        except KeyError as exc:
            raise CorrelatedDataError(f"Pollutant {exc.args[0]} not in correlated data") from None
        thresholds = None
        if self.file_thresholds is not None:
            thresholds = [self.file_thresholds[k] for k in picked]
        return CorrelatedData(
            pollutants=[self.pollutants[k] for k in picked],
            samples=[
                CorrelatedSample(s.start, s.end, s.receptor_lat, s.receptor_lon,
                                 [s.values[k] for k in picked])
                for s in self.samples
            ],
            file_thresholds=thresholds,
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _split(line: str) -> list[str]:
    return [p for p in _SPLIT_RE.split(line.strip()) if p]


def _parse_time(date_text: str, time_text: str, line_number: int) -> datetime:
    """Round ``YYYYMMDD`` + ``HHMM`` to the nearest hour (30 min rounds up)."""
    time_text = time_text.zfill(4)
    try:
        base = datetime.strptime(date_text + time_text[:2], "%Y%m%d%H")
        minutes = int(time_text[2:4])
    except ValueError:
        raise CorrelatedDataError(
            f"Cannot parse date/time '{date_text} {time_text}'", line_number=line_number)
    if minutes >= 30:
        base += timedelta(hours=1)
    return base


def read_correlated_string(text: str) -> CorrelatedData:
    """Parse correlated data from a string.

    Raises
    ------
    CorrelatedDataError
        If the header is not ``IDATE ITIME FDATE FTIME LATR LONR`` followed by
        at least one pollutant, a row has the wrong column count, or a value
        cannot be parsed.
    """
    lines = text.splitlines()
    if not lines or not lines[0].strip():
        raise CorrelatedDataError("Correlated data is empty", line_number=1)

    header = _split(lines[0])
    if tuple(h.upper() for h in header[:6]) != HEADER_COLUMNS:
        raise CorrelatedDataError(
            "Header must start with " + " ".join(HEADER_COLUMNS), line_number=1)
    if len(header) <= 6:
        raise CorrelatedDataError("Header names no pollutant columns", line_number=1)

    data = CorrelatedData(pollutants=header[6:])
    width = len(header)

    for line_number, raw in enumerate(lines[1:], start=2):
        parts = _split(raw)
        if not parts:
            continue
        try:
            if parts[0].upper() == "THRESH":
                if len(parts) != width - 5:
                    raise CorrelatedDataError(
                        f"THRESH row needs {width - 6} values, got {len(parts) - 1}",
                        line_number=line_number)
                data.file_thresholds = [float(v) for v in parts[1:]]
                continue

            if len(parts) != width:
                raise CorrelatedDataError(
                    f"Row has {len(parts)} columns, header has {width}",
                    line_number=line_number)
            data.samples.append(CorrelatedSample(
                start=_parse_time(parts[0], parts[1], line_number),
                end=_parse_time(parts[2], parts[3], line_number),
                receptor_lat=parts[4],
                receptor_lon=parts[5],
                values=[float(v) for v in parts[6:]],
            ))
        except ValueError as exc:
            raise CorrelatedDataError(f"Bad numeric value: {exc}", line_number=line_number)

    logger.debug("Read %d samples of %d pollutants", len(data.samples), len(data.pollutants))
    return data


def read_correlated_data(filepath: str | Path) -> CorrelatedData:
    path = Path(filepath)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CorrelatedDataError(f"Cannot read correlated data {path}: {exc}") from exc
    return read_correlated_string(text)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

def _percentile_value(values: np.ndarray, percentile: float) -> float:
    ordered = np.sort(values)
    if not 0.0 < percentile <= 1.0:
        return float(ordered[0])
    index = max(int(percentile * len(ordered)) - 1, 0)
    return float(ordered[index])


def compute_thresholds(
    data: CorrelatedData,
    method: str = "mean",
    percentile: float = 0.75,
) -> list[DataValue]:
    """Per-pollutant PSCF thresholds.

    Parameters
    ----------
    method : str
        ``mean``, ``mean+1sd`` (sample standard deviation), ``percentile``
        (the value at rank ``int(percentile * n)`` of the sorted samples) or
        ``file`` (the ``THRESH`` row).

    Raises
    ------
    CorrelatedDataError
        If ``file`` is requested without a ``THRESH`` row, or there are no
        samples to summarise.
    """
    if method not in THRESHOLD_METHODS:
        raise ValueError(f"threshold method must be one of {THRESHOLD_METHODS}, got {method!r}")

    if method == "file":
        if data.file_thresholds is None:
            raise CorrelatedDataError("Threshold method 'file' needs a THRESH row")
        return [DataValue(n, v) for n, v in zip(data.pollutants, data.file_thresholds)]

    if not data.samples:
        raise CorrelatedDataError("No samples to derive thresholds from")

    thresholds = []
    for k, name in enumerate(data.pollutants):
        values = data.column(k)
        if method == "mean":
            limit = float(values.mean())
        elif method == "mean+1sd":
            sd = float(values.std(ddof=1)) if len(values) > 1 else 0.0
            limit = float(values.mean()) + sd
        else:
            limit = _percentile_value(values, percentile)
        thresholds.append(DataValue(name, limit))
        logger.info("Threshold for %s (%s): %.4f", name, method, limit)
    return thresholds


# ---------------------------------------------------------------------------
# Tagging
# ---------------------------------------------------------------------------

def window_trajectory_ids(
    start: datetime,
    end: datetime,
    zone_hours: int = 0,
    increment_hours: int = 1,
) -> list[str]:
    """Trajectory ids (``YYYYMMDDHH``) arriving within a sampling window.

    Both ends are shifted by ``-zone_hours``. The start is always included;
    further ids step by *increment_hours* while strictly before the end.
    """
    shift = timedelta(hours=zone_hours)
    step = timedelta(hours=max(1, increment_hours))
    current = start - shift
    stop = end - shift
    ids = [current.strftime("%Y%m%d%H")]
    current += step
    while current < stop:
        ids.append(current.strftime("%Y%m%d%H"))
        current += step
    return ids


def tag_grid(
    grid,
    data: CorrelatedData,
    zone_hours: int = 0,
    increment_hours: int = 1,
) -> int:
    """Attach each sample's concentrations to its window's trajectories.

    Returns
    -------
    int
        Number of endpoints tagged.
    """
    tagged = 0
    for sample in data.samples:
        values = [DataValue(n, v) for n, v in zip(data.pollutants, sample.values)]
        for traj in window_trajectory_ids(sample.start, sample.end,
                                          zone_hours, increment_hours):
            tagged += grid.tag(traj, values, sample.receptor_lat, sample.receptor_lon)
    logger.info("Tagged %d endpoints from %d samples", tagged, len(data.samples))
    return tagged
