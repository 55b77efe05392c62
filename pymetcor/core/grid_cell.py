"""A single latitude/longitude bin of the trajectory-statistics grid.

A GridCell owns the endpoints that fall inside it and derives, on demand,
per-pollutant exceedance counts (MIJ), concentration-weighted trajectory
values (CWT), CWT confidence half-widths, and the receptor-averaged QTBA with
its natural transport potential sums.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Iterable, Optional, Sequence

import numpy as np

from pymetcor.core.models import (
    DataValue,
    GeoPoint,
    LengthMismatchError,
    NotFoundError,
    ValueLike,
)
from pymetcor.utils.statistics import (
    haversine_km,
    natural_transport_potential,
    student_t_quantile,
)

logger = logging.getLogger(__name__)

# Returned by natural_transport_average when no receptor contributes
QTBA_MISSING = -1.0

# Endpoints closer than this to the receptor (km) carry no potential
_MIN_DISTANCE_KM = 1e-9


def _threshold_pair(item: ValueLike) -> tuple[str, float]:
    if isinstance(item, DataValue):
        return item.name, item.value
    return str(item[0]), float(item[1])


class GridCell:
    """One spatial bin of a :class:`~pymetcor.core.spatial_grid.SpatialGrid`.

    Parameters
    ----------
    lon_corner, lat_corner : float
        South-west corner of the cell in degrees.
    """

    def __init__(self, lon_corner: float = 0.0, lat_corner: float = 0.0) -> None:
        self.lon_corner = lon_corner
        self.lat_corner = lat_corner
        self.points: list[GeoPoint] = []

        # Allocated on first successful tagging, sized to the pollutant count
        self.exceedance_counts: Optional[np.ndarray] = None
        self.cwt: Optional[np.ndarray] = None
        self.transport_potential_sum: Optional[np.ndarray] = None

        self._cwt_computed = False
        self._cwt_excluded: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return (f"GridCell(lon_corner={self.lon_corner}, lat_corner={self.lat_corner}, "
                f"population={self.population}, tagged={self.tagged_population})")

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_point(self, point: GeoPoint) -> None:
        self.points.append(point)

    @property
    def population(self) -> int:
        """NIJ: every endpoint in the cell, tagged or not."""
        return len(self.points)

    @property
    def tagged_population(self) -> int:
        return sum(1 for p in self.points if p.has_data)

    @property
    def pollutant_count(self) -> int:
        """Pollutant count fixed at first tagging, 0 if never tagged."""
        if self.exceedance_counts is None:
            return 0
        return len(self.exceedance_counts)

    def tagged_points(self) -> Iterable[GeoPoint]:
        return (p for p in self.points if p.has_data)

    # ------------------------------------------------------------------
    # Tagging
    # ------------------------------------------------------------------

    def attach_data(
        self,
        trajectory_id: str,
        data: Sequence[ValueLike],
        receptor_lat,
        receptor_lon,
    ) -> int:
        """Attach *data* to every endpoint of *trajectory_id* at the receptor.

        Trajectory ids must match exactly; receptor coordinates are compared
        numerically.

        Returns
        -------
        int
            Number of endpoints tagged by this call.
        """
        tagged = 0
        for point in self.points:
            if point.trajectory_id is None:
                continue
            if point.trajectory_id != str(trajectory_id):
                continue
            if not point.matches_receptor(receptor_lat, receptor_lon):
                continue
            try:
                point.add_data(data)
            except LengthMismatchError as exc:
                logger.warning("Skipping tag of %s: %s", trajectory_id, exc)
                continue
            tagged += 1
            if self.exceedance_counts is None:
                n = len(point.values)
                self.exceedance_counts = np.zeros(n, dtype=np.int64)
                self.cwt = np.zeros(n, dtype=np.float64)
                self.transport_potential_sum = np.zeros(n, dtype=np.float64)
                self._cwt_excluded = np.zeros(n, dtype=bool)
        return tagged

    # ------------------------------------------------------------------
    # Trajectory keys
    # ------------------------------------------------------------------

    def _key_counts(self, only_tagged: bool) -> Counter:
        points = self.tagged_points() if only_tagged else self.points
        return Counter(p.trajectory_key for p in points if p.trajectory_key is not None)

    def unique_trajectories(self, only_tagged: bool = False) -> int:
        """Count distinct ``(trajectory_id, receptor)`` keys in the cell."""
        return len(self._key_counts(only_tagged))

    def trajectory_keys(self, only_tagged: bool = False) -> set[tuple[str, str]]:
        return set(self._key_counts(only_tagged))

    def contains_trajectory(self, key: tuple[str, str]) -> bool:
        """True if a tagged endpoint with composite *key* lies in the cell."""
        return any(p.trajectory_key == key for p in self.tagged_points())

    def receptors(self) -> set[tuple[str, str]]:
        return {p.receptor for p in self.tagged_points() if p.receptor is not None}

    def _first_value(self, key: tuple[str, str], name: str) -> float:
        for point in self.tagged_points():
            if point.trajectory_key == key:
                return point.get_value(name)
        raise NotFoundError(f"no tagged endpoint with key {key!r}")

    # ------------------------------------------------------------------
    # PSCF
    # ------------------------------------------------------------------

    def count_exceedances(self, thresholds: Sequence[ValueLike]) -> bool:
        """Recount MIJ: tagged endpoints whose value is >= the threshold.

        Silently declines (returns False) when the cell was never tagged or
        *thresholds* disagrees with the pollutant count.
        """
        if self.exceedance_counts is None or len(thresholds) != self.pollutant_count:
            return False

        counts = np.zeros(self.pollutant_count, dtype=np.int64)
        for k, item in enumerate(thresholds):
            name, limit = _threshold_pair(item)
            for point in self.tagged_points():
                try:
                    value = point.find_value(name)
                except NotFoundError as exc:
                    logger.warning("Exceedance lookup skipped: %s", exc)
                    continue
                value.exceeds_threshold = value.value >= limit
                if value.exceeds_threshold:
                    counts[k] += 1
        self.exceedance_counts = counts
        return True

    # ------------------------------------------------------------------
    # CWT
    # ------------------------------------------------------------------

    @property
    def cwt_computed(self) -> bool:
        return self._cwt_computed

    def compute_cwt(
        self,
        pollutant_names: Sequence[str],
        log_transform: bool = False,
    ) -> Optional[np.ndarray]:
        """(Re)compute the cell's CWT vector in place.

        For each pollutant the value of every unique trajectory key (taken
        from its first tagged endpoint) is weighted by the key's occurrence
        count and the sum divided by the tagged population. Entries excluded
        by smoothing keep their sentinel.

        Returns
        -------
        np.ndarray or None
            The cell's CWT vector, or None when nothing is tagged here.
        """
        tagged = self.tagged_population
        if tagged == 0 or self.cwt is None:
            return self.cwt

        keys = self._key_counts(only_tagged=True)
        for k, name in enumerate(pollutant_names[: len(self.cwt)]):
            total = 0.0
            for key, count in keys.items():
                try:
                    value = self._first_value(key, name)
                except NotFoundError as exc:
                    logger.warning("CWT contribution dropped: %s", exc)
                    continue
                total += (math.log10(value) if log_transform else value) * count
            if not self._cwt_excluded[k]:
                self.cwt[k] = total / tagged
        self._cwt_computed = True
        return self.cwt

    def set_cwt(self, index: int, value: float) -> None:
        if self.cwt is not None and not self._cwt_excluded[index]:
            self.cwt[index] = value

    def exclude_cwt(self, index: int, no_data: float) -> None:
        """Mark one pollutant's CWT as excluded, holding *no_data*."""
        if self.cwt is None:
            return
        self.cwt[index] = no_data
        self._cwt_excluded[index] = True

    def is_cwt_excluded(self, index: int) -> bool:
        return self._cwt_excluded is not None and bool(self._cwt_excluded[index])

    def uncertainty(
        self,
        confidence: float,
        pollutant_index: int,
        pollutant_name: str,
        log_transform: bool = False,
    ) -> Optional[float]:
        """Half-width of the CWT confidence interval for one pollutant.

        ``std(residuals) * t(1 - confidence, n - 1) / sqrt(n)`` over the
        tagged endpoints, with the sample standard deviation. NaN when fewer
        than two endpoints are tagged.

        Returns
        -------
        float or None
            None when CWT has not been computed for this cell.
        """
        if not self._cwt_computed or self.cwt is None:
            return None

        centre = self.cwt[pollutant_index]
        n = 0
        squares = 0.0
        for point in self.tagged_points():
            try:
                value = point.get_value(pollutant_name)
            except NotFoundError as exc:
                logger.warning("Uncertainty residual dropped: %s", exc)
                continue
            if log_transform:
                value = math.log10(value)
            squares += (centre - value) ** 2
            n += 1

        if n < 2:
            return math.nan
        std = math.sqrt(squares / (n - 1))
        return std * student_t_quantile(1.0 - confidence, n - 1) / math.sqrt(n)

    def scale_values(
        self,
        key: tuple[str, str],
        pollutant_name: str,
        multiple: float,
    ) -> None:
        """Multiply the working value of every tagged endpoint with *key*."""
        for point in self.tagged_points():
            if point.trajectory_key != key:
                continue
            try:
                item = point.find_value(pollutant_name)
            except NotFoundError as exc:
                logger.warning("Redistribution skipped: %s", exc)
                continue
            item.value = multiple * item.value

    # ------------------------------------------------------------------
    # QTBA
    # ------------------------------------------------------------------

    def natural_transport_average(
        self,
        pollutant_name: str,
        dispersion_velocity: float,
        pollutant_index: int,
        world_receptor_count: int,
    ) -> float:
        """Receptor-averaged, potential-weighted concentration (QTBA).

        Per receptor, each tagged endpoint at a non-zero distance adds its
        natural transport potential to the denominator and potential times
        concentration to the numerator. Also stores the potential sum used
        for QTBA weighting.

        Returns
        -------
        float
            The cell's QTBA, or ``QTBA_MISSING`` when nothing contributes.

        Raises
        ------
        NotFoundError
            If a contributing endpoint lacks *pollutant_name*.
        ValueError
            If an endpoint's tag cannot be read as coordinates and lag.
        """
        receptors = sorted(self.receptors())
        if not receptors:
            return QTBA_MISSING

        per_receptor: list[float] = []
        potentials: list[float] = []
        for rec_lat, rec_lon in receptors:
            lat_r, lon_r = float(rec_lat), float(rec_lon)
            potential_sum = 0.0
            weighted_sum = 0.0
            for point in self.tagged_points():
                if not point.matches_receptor(rec_lat, rec_lon):
                    continue
                distance = haversine_km(point.lat, point.lon - 360.0, lat_r, lon_r)
                if abs(distance) < _MIN_DISTANCE_KM:
                    continue
                potential = natural_transport_potential(
                    point.lag_hours, distance, dispersion_velocity)
                potential_sum += potential
                weighted_sum += potential * point.get_value(pollutant_name)
            qtba = weighted_sum / potential_sum if potential_sum > 0 else QTBA_MISSING
            per_receptor.append(qtba)
            potentials.append(potential_sum)

        if len(per_receptor) == 1 and world_receptor_count == 1:
            if per_receptor[0] == QTBA_MISSING:
                return QTBA_MISSING
            self.transport_potential_sum[pollutant_index] = potentials[0]
            return per_receptor[0]

        if len(per_receptor) > 1 and world_receptor_count > 1:
            valid = [(q, t) for q, t in zip(per_receptor, potentials) if q >= 0]
            count = len(per_receptor)
            self.transport_potential_sum[pollutant_index] = sum(t for _, t in valid) / count
            return sum(q for q, _ in valid) / count

        return QTBA_MISSING
