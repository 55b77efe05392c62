"""Core data models and custom exceptions for pymetcor.

Defines the trajectory endpoint record (GeoPoint), tagged pollutant values,
analysis configuration dataclasses, and all custom exception types used
throughout the package.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union


# ---------------------------------------------------------------------------
# Custom Exceptions
# ---------------------------------------------------------------------------

class MetCorError(Exception):
    """Base exception for all pymetcor errors."""


class NotFoundError(MetCorError):
    """Raised when a named value or an original-value index is absent."""


class LengthMismatchError(MetCorError):
    """Raised when attached data is empty or disagrees with a pollutant count."""


class TrajectoryFileError(MetCorError):
    """Raised when a trajectory endpoint file is missing or unreadable."""


class ConfigParseError(MetCorError):
    """Raised when a METCOR configuration block has format errors.

    Attributes:
        line_number: The line number where the error was detected.
        expected: Description of the expected format.
        key: The configuration key being parsed, if known.
    """

    def __init__(self, message: str, line_number: int | None = None,
                 expected: str | None = None, key: str | None = None):
        self.line_number = line_number
        self.expected = expected
        self.key = key
        parts = [message]
        if key is not None:
            parts.append(f"key {key}")
        if line_number is not None:
            parts.append(f"at line {line_number}")
        if expected is not None:
            parts.append(f"(expected: {expected})")
        super().__init__(" ".join(parts))


class CorrelatedDataError(MetCorError):
    """Raised when a correlated-data file is missing or structurally invalid.

    Attributes:
        line_number: 1-based line of the offending content, if known.
    """

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"{message} at line {line_number}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Tagged values
# ---------------------------------------------------------------------------

@dataclass
class DataValue:
    """One named pollutant concentration attached to an endpoint.

    Attributes:
        name: Pollutant name, unique within a point.
        value: Working concentration value (mutated by redistribution).
        exceeds_threshold: Set while counting exceedances for PSCF.
    """

    name: str
    value: float
    exceeds_threshold: bool = False


ValueLike = Union[DataValue, Sequence]


def _as_data_value(item: ValueLike) -> DataValue:
    if isinstance(item, DataValue):
        return DataValue(item.name, float(item.value), item.exceeds_threshold)
    name, value = item[0], item[1]
    return DataValue(str(name), float(value))


# ---------------------------------------------------------------------------
# Trajectory endpoint
# ---------------------------------------------------------------------------

class GeoPoint:
    """A single back-trajectory endpoint.

    Parameters
    ----------
    lon : float
        Longitude in degrees, expected in ``[0, 360)``.
    lat : float
        Latitude in degrees, expected in ``(-90, 90]``.
    trajectory_id : str or None
        Identifier shared by all endpoints of one trajectory run.
    aux_tag : str or None
        Comma-joined ``height,receptorLat,receptorLon,lagHours``. Only the
        last three components are interpreted.
    """

    __slots__ = ("lon", "lat", "trajectory_id", "aux_tag",
                 "values", "original_values")

    def __init__(
        self,
        lon: float,
        lat: float,
        trajectory_id: Optional[str] = None,
        aux_tag: Optional[str] = None,
    ) -> None:
        self.lon = float(lon)
        self.lat = float(lat)
        self.trajectory_id = trajectory_id
        self.aux_tag = aux_tag
        self.values: list[DataValue] = []
        self.original_values: list[DataValue] = []

    def __repr__(self) -> str:
        return (f"GeoPoint(lon={self.lon}, lat={self.lat}, "
                f"trajectory_id={self.trajectory_id!r}, aux_tag={self.aux_tag!r})")

    # -- Tag components ------------------------------------------------------

    def _tag_parts(self) -> list[str]:
        if self.aux_tag is None:
            return []
        return [p.strip() for p in self.aux_tag.split(",")]

    @property
    def receptor(self) -> Optional[tuple[str, str]]:
        """Receptor ``(lat, lon)`` strings, or None if the tag lacks them."""
        parts = self._tag_parts()
        if len(parts) < 3:
            return None
        return parts[-3], parts[-2]

    @property
    def lag_hours(self) -> float:
        """Temporal lag between this endpoint and the trajectory start.

        Raises
        ------
        ValueError
            If the tag is missing or its last component is not numeric.
        """
        parts = self._tag_parts()
        if not parts:
            raise ValueError(f"point {self!r} carries no lag component")
        return float(parts[-1])

    @property
    def receptor_key(self) -> Optional[str]:
        """The aux tag with its final (lag) component removed."""
        if self.aux_tag is None:
            return None
        head, sep, _ = self.aux_tag.rpartition(",")
        return head if sep else self.aux_tag

    @property
    def trajectory_key(self) -> Optional[tuple[str, str]]:
        """Composite ``(trajectory_id, receptor_key)`` used for uniqueness."""
        if self.trajectory_id is None or self.aux_tag is None:
            return None
        return self.trajectory_id, self.receptor_key

    def matches_receptor(self, receptor_lat, receptor_lon) -> bool:
        receptor = self.receptor
        if receptor is None:
            return False
        return (_same_coordinate(receptor[0], receptor_lat)
                and _same_coordinate(receptor[1], receptor_lon))

    # -- Data ----------------------------------------------------------------

    @property
    def has_data(self) -> bool:
        return bool(self.values)

    def add_data(self, values: Optional[Iterable[ValueLike]]) -> None:
        """Attach a copy of *values* to this point.

        The first successful call also snapshots ``original_values``; later
        calls only replace the working values.

        Raises
        ------
        LengthMismatchError
            If *values* is None or empty.
        """
        if values is None:
            raise LengthMismatchError("cannot attach a null data set")
        copied = [_as_data_value(v) for v in values]
        if not copied:
            raise LengthMismatchError("cannot attach an empty data set")
        self.values = copied
        if not self.original_values:
            self.original_values = [DataValue(v.name, v.value) for v in copied]

    def find_value(self, name: str) -> DataValue:
        for item in self.values:
            if item.name == name:
                return item
        raise NotFoundError(f"value {name!r} not attached to {self!r}")

    def get_value(self, name: str) -> float:
        """Return the working value named *name*.

        Raises
        ------
        NotFoundError
            If no attached value carries that name.
        """
        return self.find_value(name).value

    def get_original_value(self, index: int) -> float:
        if index < 0 or index >= len(self.original_values):
            raise NotFoundError(
                f"original value index {index} out of range "
                f"({len(self.original_values)} values)"
            )
        return self.original_values[index].value

    def set_value(self, index: int, value: float) -> None:
        """Replace the working value at *index*; out-of-range is ignored."""
        if 0 <= index < len(self.values):
            self.values[index].value = float(value)


def _same_coordinate(a, b) -> bool:
    try:
        return math.isclose(float(a), float(b), rel_tol=0.0, abs_tol=1e-6)
    except (TypeError, ValueError):
        return str(a).strip().lower() == str(b).strip().lower()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

THRESHOLD_METHODS = ("mean", "mean+1sd", "percentile", "file")
RTWC_MODES = (1, 2, 3, 4)
TRAJECTORY_FORMATS = ("tdump", "cmc")


@dataclass
class SmoothingParams:
    """Savitzky-Golay smoothing parameters used by CWT smoothing.

    Attributes:
        filter_length: Number of samples spanned by the filter window.
        poly_degree: Degree of the local fitting polynomial.
        confidence: Confidence level (0-1) of the acceptance band.
    """

    filter_length: int = 5
    poly_degree: int = 2
    confidence: float = 0.95


@dataclass
class RTWCResult:
    """Outcome of an RTWC run."""

    iterations: int
    converged: list[bool] = field(default_factory=list)
    percent_diff: list[float] = field(default_factory=list)


@dataclass
class AnalysisConfig:
    """Complete configuration for one trajectory-statistics run.

    Grid geometry follows the cell-index mapping of ``SpatialGrid``: the
    longitude extent starts at 0 and the latitude extent counts down from 90
    when it exceeds 90, otherwise up from the equator.
    """

    lon_extent: float = 360.0
    lat_extent: float = 90.0
    d_lon: float = 1.0
    d_lat: float = 1.0
    trajectory_files: list[str] = field(default_factory=list)
    correlated_data_file: Optional[str] = None
    output_dir: str = "."
    pollutants: list[str] = field(default_factory=list)

    threshold_method: str = "mean"
    percentile: float = 0.75

    pscf: bool = True
    cwt: bool = True
    rtwc: bool = False
    qtba: bool = False

    log_transform: bool = False
    smooth_cwt: bool = False
    by_unique_trajectory_count: bool = False

    rtwc_mode: int = 1
    convergence_percent: float = 1.0
    max_iterations: int = 1000
    smoothing: SmoothingParams = field(default_factory=SmoothingParams)

    no_data_value: float = -1.0
    dispersion_velocity: float = 5.4

    zone_hours: int = 0
    increment_hours: int = 1
    century_start: int = 2000
    trajectory_format: str = "tdump"
    cmc_columns: int = 9

    pscf_weights_file: Optional[str] = None
    cwt_weights_file: Optional[str] = None
    qtba_weights_file: Optional[str] = None
    histogram_intervals: int = 10

    def __post_init__(self) -> None:
        if self.convergence_percent < 0:
            self.convergence_percent = 1.0
