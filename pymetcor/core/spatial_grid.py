"""Latitude/longitude lattice of GridCells and the four statistical fields.

The SpatialGrid bins trajectory endpoints, drives tagging across cells and
computes per-pollutant PSCF, CWT, RTWC (iteratively redistributed CWT) and
QTBA fields. Every field is a :class:`CellField`: per cell either
unallocated (never tagged) or a vector covering all pollutants.

Cell order
----------
All cross-cell passes walk cells longitude-index-major: ``i`` (longitude)
in the outer loop, ``j`` (latitude band) in the inner loop. CWT smoothing
flattens and unflattens in this order.

References:
    Ashbaugh, L.L. et al. (1985) Atmos. Environ. 19, 1263-1270 (PSCF).
    Hsu, Y.-K. et al. (2003) Atmos. Environ. 37, 545-562 (CWT).
    Stohl, A. (1996) Atmos. Environ. 30, 579-587 (redistributed CWT).
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Iterable, Iterator, Optional, Sequence

import numpy as np

from pymetcor.core.grid_cell import QTBA_MISSING, GridCell
from pymetcor.core.models import (
    GeoPoint,
    MetCorError,
    RTWCResult,
    RTWC_MODES,
    SmoothingParams,
    ValueLike,
)
from pymetcor.core.weights import IntegerWeightTable, WeightTable
from pymetcor.utils.statistics import savgol_smooth

logger = logging.getLogger(__name__)

PSCF = "PSCF"
CWT = "CWT"
PREVIOUS_CWT = "PREVIOUS_CWT"
FINAL_CWT = "FINAL_CWT"
QTBA = "QTBA"
FIELDS = (PSCF, CWT, PREVIOUS_CWT, FINAL_CWT, QTBA)

HISTOGRAM_QUANTITIES = ("population", "tagged_population", "unique_trajectories")

# Tolerance when dividing an extent into cells
_EPS = 1e-9


def _cells_along(extent: float, step: float) -> int:
    return max(1, int(math.ceil(extent / step - _EPS)))


# ---------------------------------------------------------------------------
# Per-cell optional field storage
# ---------------------------------------------------------------------------

class CellField:
    """A 2-D array of optional per-pollutant vectors.

    ``None`` marks a cell that was never tagged; an allocated vector may
    still hold sentinel or NaN entries for excluded pollutants.
    """

    def __init__(self, nx: int, ny: int) -> None:
        self.nx = nx
        self.ny = ny
        self._data: list[list[Optional[np.ndarray]]] = [
            [None] * ny for _ in range(nx)
        ]

    def get(self, i: int, j: int) -> Optional[np.ndarray]:
        return self._data[i][j]

    def set(self, i: int, j: int, values: Optional[np.ndarray]) -> None:
        self._data[i][j] = values

    def is_allocated(self, i: int, j: int) -> bool:
        return self._data[i][j] is not None

    def allocated(self) -> Iterator[tuple[int, int, np.ndarray]]:
        for i in range(self.nx):
            for j in range(self.ny):
                vec = self._data[i][j]
                if vec is not None:
                    yield i, j, vec

    def copy(self) -> "CellField":
        out = CellField(self.nx, self.ny)
        for i, j, vec in self.allocated():
            out._data[i][j] = vec.copy()
        return out

    def clear(self) -> None:
        for column in self._data:
            for j in range(self.ny):
                column[j] = None


# ---------------------------------------------------------------------------
# SpatialGrid
# ---------------------------------------------------------------------------

class SpatialGrid:
    """Grid of :class:`GridCell` covering the configured extent.

    Parameters
    ----------
    lon_extent : float
        Longitude span in degrees, starting at 0 (e.g. 360 for the globe).
    lat_extent : float
        Latitude span in degrees. Up to 90 it covers ``[0, lat_extent)``;
        beyond 90 it covers ``[90 - lat_extent, 90)`` with southern bands
        indexed after the northern ones.
    d_lon, d_lat : float
        Cell size in degrees.
    """

    def __init__(
        self,
        lon_extent: float = 360.0,
        lat_extent: float = 90.0,
        d_lon: float = 1.0,
        d_lat: float = 1.0,
    ) -> None:
        if d_lon <= 0 or d_lat <= 0:
            raise ValueError(f"cell size must be positive, got {d_lon} x {d_lat}")
        if lon_extent <= 0 or lat_extent <= 0:
            raise ValueError(
                f"grid extent must be positive, got {lon_extent} x {lat_extent}")

        self.lon_extent = float(lon_extent)
        self.lat_extent = float(lat_extent)
        self.d_lon = float(d_lon)
        self.d_lat = float(d_lat)
        self.nx = _cells_along(self.lon_extent, self.d_lon)
        self.ny = _cells_along(self.lat_extent, self.d_lat)
        self.north_rows = min(self.ny, _cells_along(90.0, self.d_lat))

        self.cells: list[list[GridCell]] = [
            [GridCell(self.d_lon * i, self._band_floor(j)) for j in range(self.ny)]
            for i in range(self.nx)
        ]
        self.fields: dict[str, CellField] = {
            name: CellField(self.nx, self.ny) for name in FIELDS
        }
        self._world_ids: set[tuple[str, str]] = set()

        logger.debug(
            "SpatialGrid %dx%d cells (%.3f x %.3f deg) over %.1f x %.1f deg",
            self.nx, self.ny, self.d_lon, self.d_lat, self.lon_extent, self.lat_extent,
        )

    @property
    def spans_south(self) -> bool:
        return self.lat_extent > 90.0

    @property
    def lat_floor(self) -> float:
        """Lowest accepted latitude."""
        return 90.0 - self.lat_extent if self.spans_south else 0.0

    def _band_floor(self, j: int) -> float:
        if self.spans_south and j >= self.north_rows:
            return -(j - self.north_rows + 1) * self.d_lat
        return j * self.d_lat

    # ------------------------------------------------------------------
    # Geometry and insertion
    # ------------------------------------------------------------------

    def cell_index(self, lon: float, lat: float) -> Optional[tuple[int, int]]:
        """Map a coordinate to its ``(i, j)`` cell, or None if out of bounds."""
        if not (0.0 <= lon < self.lon_extent):
            return None

        if self.spans_south:
            if 0.0 <= lat < 90.0:
                j = int(math.floor(lat / self.d_lat))
            elif self.lat_floor <= lat < 0.0:
                j = self.north_rows + int(math.ceil(-lat / self.d_lat)) - 1
            else:
                return None
        elif 0.0 <= lat < self.lat_extent:
            j = int(math.floor(lat / self.d_lat))
        else:
            return None

        i = int(math.floor(lon / self.d_lon))
        if i >= self.nx or j >= self.ny:
            return None
        return i, j

    def insert(self, point: GeoPoint) -> bool:
        """Add *point* to its cell.

        The point's trajectory key is recorded in the world id set whether
        or not the coordinate is accepted.

        Returns
        -------
        bool
            False if the coordinate lies outside the grid.
        """
        key = point.trajectory_key
        if key is not None:
            self._world_ids.add(key)

        index = self.cell_index(point.lon, point.lat)
        if index is None:
            return False
        i, j = index
        self.cells[i][j].add_point(point)
        return True

    def insert_all(self, points: Iterable[GeoPoint]) -> tuple[int, int]:
        """Insert many points; returns ``(inserted, rejected)`` counts."""
        inserted = rejected = 0
        for point in points:
            if self.insert(point):
                inserted += 1
            else:
                rejected += 1
        return inserted, rejected

    # ------------------------------------------------------------------
    # Cell access and population metrics
    # ------------------------------------------------------------------

    def cell(self, i: int, j: int) -> GridCell:
        return self.cells[i][j]

    def iter_cells(self) -> Iterator[tuple[int, int, GridCell]]:
        for i in range(self.nx):
            for j in range(self.ny):
                yield i, j, self.cells[i][j]

    @property
    def world_ids(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._world_ids)

    @property
    def population(self) -> int:
        return sum(c.population for _, _, c in self.iter_cells())

    @property
    def tagged_population(self) -> int:
        return sum(c.tagged_population for _, _, c in self.iter_cells())

    @property
    def pollutant_count(self) -> int:
        return max((c.pollutant_count for _, _, c in self.iter_cells()), default=0)

    def max_population(self) -> int:
        return max((c.population for _, _, c in self.iter_cells()), default=0)

    def receptors(self) -> set[tuple[str, str]]:
        """Distinct receptors over every tagged endpoint in the grid."""
        found: set[tuple[str, str]] = set()
        for _, _, cell in self.iter_cells():
            found |= cell.receptors()
        return found

    def average_tagged_population(self) -> float:
        """Mean tagged population over cells with any tagged endpoint."""
        counts = [c.tagged_population for _, _, c in self.iter_cells()
                  if c.tagged_population > 0]
        return float(np.mean(counts)) if counts else 0.0

    def average_transport_potential(self) -> np.ndarray:
        """Per-pollutant mean natural transport potential over tagged cells."""
        sums = [c.transport_potential_sum for _, _, c in self.iter_cells()
                if c.tagged_population > 0 and c.transport_potential_sum is not None]
        if not sums:
            return np.zeros(0)
        return np.mean(np.vstack(sums), axis=0)

    # ------------------------------------------------------------------
    # Tagging
    # ------------------------------------------------------------------

    def tag(
        self,
        trajectory_id: str,
        data: Sequence[ValueLike],
        receptor_lat,
        receptor_lon,
    ) -> int:
        """Attach *data* to matching endpoints in every cell."""
        return sum(
            cell.attach_data(trajectory_id, data, receptor_lat, receptor_lon)
            for _, _, cell in self.iter_cells()
            if cell.population > 0
        )

    # ------------------------------------------------------------------
    # PSCF
    # ------------------------------------------------------------------

    def compute_pscf(
        self,
        thresholds: Sequence[ValueLike],
        weights: Optional[WeightTable] = None,
        by_unique_trajectory_count: bool = False,
    ) -> None:
        """Compute ``weight * MIJ / tagged`` for every tagged cell."""
        weights = weights if weights is not None else IntegerWeightTable.default_pscf()
        field = self.fields[PSCF]
        if not thresholds:
            return

        for i, j, cell in self.iter_cells():
            if not cell.count_exceedances(thresholds):
                continue
            tagged = cell.tagged_population
            key = (cell.unique_trajectories(only_tagged=True)
                   if by_unique_trajectory_count else tagged)
            weight = weights.lookup(key)
            field.set(i, j, weight * cell.exceedance_counts / tagged)

    # ------------------------------------------------------------------
    # CWT
    # ------------------------------------------------------------------

    def compute_cwt(
        self,
        pollutant_names: Sequence[str],
        log_transform: bool = False,
    ) -> None:
        """(Re)compute CWT for every cell with tagged endpoints.

        Untagged cells keep whatever the field already holds.
        """
        field = self.fields[CWT]
        for i, j, cell in self.iter_cells():
            if cell.tagged_population > 0:
                field.set(i, j, cell.compute_cwt(pollutant_names, log_transform))

    def smooth_cwt(
        self,
        pollutant_names: Sequence[str],
        no_data: float,
        filter_length: int,
        poly_degree: int,
        confidence: float,
        log_transform: bool = False,
    ) -> None:
        """Savitzky-Golay smooth each pollutant's CWT across cells.

        A smoothed value is kept only when it stays inside the cell's CWT
        confidence band; otherwise the cell's entry is excluded and set to
        *no_data*.
        """
        field = self.fields[CWT]
        for k, name in enumerate(pollutant_names):
            members = [
                (i, j) for i, j, vec in field.allocated()
                if k < len(vec)
                and not self.cells[i][j].is_cwt_excluded(k)
                and vec[k] != no_data
            ]
            if not members:
                continue

            raw = [field.get(i, j)[k] for i, j in members]
            smoothed = savgol_smooth(raw, filter_length, poly_degree)

            rejected = 0
            for (i, j), before, after in zip(members, raw, smoothed):
                cell = self.cells[i][j]
                band = cell.uncertainty(confidence, k, name, log_transform)
                if band is not None and before - band <= after <= before + band:
                    cell.set_cwt(k, float(after))
                else:
                    cell.exclude_cwt(k, no_data)
                    rejected += 1
            logger.debug("Smoothed %s over %d cells, %d excluded",
                         name, len(members), rejected)

    # ------------------------------------------------------------------
    # RTWC
    # ------------------------------------------------------------------

    def _trajectory_cells(self) -> dict[tuple[str, str], list[tuple[int, int]]]:
        index: dict[tuple[str, str], list[tuple[int, int]]] = defaultdict(list)
        for i, j, cell in self.iter_cells():
            if cell.tagged_population == 0:
                continue
            for key in cell.trajectory_keys(only_tagged=True):
                index[key].append((i, j))
        return index

    def average_trajectory_cwt(
        self,
        cells: Sequence[tuple[int, int]],
        pollutant_index: int,
    ) -> Optional[float]:
        """Mean non-excluded CWT over *cells*, or None if unusable."""
        total = 0.0
        count = 0
        for i, j in cells:
            cell = self.cells[i][j]
            if not cell.cwt_computed:
                return None
            if cell.is_cwt_excluded(pollutant_index):
                continue
            total += cell.cwt[pollutant_index]
            count += 1
        if count <= 0 or total <= 0:
            return None
        return total / count

    def redistribute_concentration(
        self,
        pollutant_names: Sequence[str],
        no_data: float,
        world_ids: Optional[Iterable[tuple[str, str]]] = None,
    ) -> int:
        """One RTWC step: rescale each trajectory's values by CWT/avgCWT.

        The multiple is applied to the current working values, so repeated
        steps compound.

        Parameters
        ----------
        world_ids : iterable of trajectory keys, optional
            Trajectories to redistribute; defaults to the grid's world set.

        Returns
        -------
        int
            Number of (trajectory, pollutant) pairs rescaled.
        """
        ids = self._world_ids if world_ids is None else set(world_ids)
        touched = self._trajectory_cells()
        rescaled = 0
        for key in sorted(ids):
            cells = touched.get(key)
            if not cells:
                continue
            for k, name in enumerate(pollutant_names):
                avg = self.average_trajectory_cwt(cells, k)
                if avg is None:
                    continue
                for i, j in cells:
                    cell = self.cells[i][j]
                    if cell.is_cwt_excluded(k) or cell.cwt[k] == no_data:
                        continue
                    cell.scale_values(key, name, cell.cwt[k] / avg)
                rescaled += 1
        return rescaled

    def _valid_cwt(self, field_name: str, index: int) -> np.ndarray:
        values = []
        for i, j, vec in self.fields[field_name].allocated():
            if index >= len(vec):
                continue
            if field_name == CWT and self.cells[i][j].is_cwt_excluded(index):
                continue
            values.append(vec[index])
        values = np.asarray(values, dtype=np.float64)
        return values[values > 0]

    def percent_difference(self, pollutant_index: int) -> float:
        """Percent change of mean positive CWT against the previous pass."""
        current = self._valid_cwt(CWT, pollutant_index)
        previous = self._valid_cwt(PREVIOUS_CWT, pollutant_index)
        if current.size == 0 or previous.size == 0:
            return math.nan
        old = previous.mean()
        return float(abs(current.mean() - old) * 100.0 / old)

    def snapshot_previous(self) -> None:
        """Copy the CWT field into PREVIOUS_CWT, excluded entries as NaN."""
        previous = CellField(self.nx, self.ny)
        for i, j, vec in self.fields[CWT].allocated():
            copy = vec.copy()
            cell = self.cells[i][j]
            for k in range(len(copy)):
                if cell.is_cwt_excluded(k):
                    copy[k] = np.nan
            previous.set(i, j, copy)
        self.fields[PREVIOUS_CWT] = previous

    def finalize_cwt(self, pollutant_index: int) -> None:
        """Snapshot one pollutant's current CWT into FINAL_CWT."""
        final = self.fields[FINAL_CWT]
        for i, j, vec in self.fields[CWT].allocated():
            target = final.get(i, j)
            if target is None:
                target = np.full(len(vec), np.nan)
                final.set(i, j, target)
            if self.cells[i][j].is_cwt_excluded(pollutant_index):
                target[pollutant_index] = np.nan
            else:
                target[pollutant_index] = vec[pollutant_index]

    def run_rtwc(
        self,
        pollutant_names: Sequence[str],
        mode: int,
        convergence_percent: float = 1.0,
        max_iterations: int = 1000,
        smoothing: Optional[SmoothingParams] = None,
        no_data: float = -1.0,
    ) -> RTWCResult:
        """Iteratively redistribute concentrations and recompute CWT.

        Modes
        -----
        1 : fixed iteration count, no smoothing
        2 : per-pollutant percent convergence, no smoothing
        3 : per-pollutant percent convergence, smoothing every iteration
        4 : fixed iteration count, smoothing every iteration

        Fixed-count modes run ``max_iterations`` CWT passes in total, so a
        budget of 1 finalizes the plain CWT. Convergence modes finalize a
        pollutant the first time its percent difference is within
        *convergence_percent* and force-finalize the rest at the budget.
        """
        if mode not in RTWC_MODES:
            raise ValueError(f"RTWC mode must be one of {RTWC_MODES}, got {mode}")
        if convergence_percent < 0:
            convergence_percent = 1.0
        smoothing = smoothing or SmoothingParams()
        n = len(pollutant_names)

        def smooth() -> None:
            self.smooth_cwt(pollutant_names, no_data, smoothing.filter_length,
                            smoothing.poly_degree, smoothing.confidence)

        self.fields[FINAL_CWT].clear()
        self.compute_cwt(pollutant_names)
        passes = 1

        if mode in (1, 4):
            for _ in range(max_iterations - 1):
                self.redistribute_concentration(pollutant_names, no_data)
                self.compute_cwt(pollutant_names)
                if mode == 4:
                    smooth()
                passes += 1
            for k in range(n):
                self.finalize_cwt(k)
            logger.info("RTWC mode %d finished after %d CWT passes", mode, passes)
            return RTWCResult(iterations=passes, converged=[False] * n,
                              percent_diff=[math.nan] * n)

        finalized = [False] * n
        diffs = [math.nan] * n
        iterations = 0
        while True:
            self.snapshot_previous()
            self.redistribute_concentration(pollutant_names, no_data)
            self.compute_cwt(pollutant_names)
            if mode == 3:
                smooth()
            iterations += 1

            for k in range(n):
                if finalized[k]:
                    continue
                diffs[k] = self.percent_difference(k)
                logger.debug("RTWC iteration %d %s: %.4f%%",
                             iterations, pollutant_names[k], diffs[k])
                if 0 <= diffs[k] <= convergence_percent:
                    self.finalize_cwt(k)
                    finalized[k] = True
                    logger.info("RTWC %s converged after %d iterations",
                                pollutant_names[k], iterations)

            if all(finalized):
                break
            if iterations >= max_iterations:
                for k in range(n):
                    if not finalized[k]:
                        self.finalize_cwt(k)
                logger.warning("RTWC reached %d iterations with %d unconverged",
                               iterations, finalized.count(False))
                break

        converged = list(finalized)
        return RTWCResult(iterations=iterations, converged=converged, percent_diff=diffs)

    # ------------------------------------------------------------------
    # QTBA
    # ------------------------------------------------------------------

    def compute_qtba(
        self,
        pollutant_names: Sequence[str],
        dispersion_velocity: float,
    ) -> None:
        """Compute QTBA for every tagged cell.

        A failure for one cell and pollutant is logged and stored as 0.
        """
        field = self.fields[QTBA]
        world_receptors = len(self.receptors())
        for i, j, cell in self.iter_cells():
            if cell.tagged_population == 0:
                continue
            values = np.zeros(len(pollutant_names), dtype=np.float64)
            for k, name in enumerate(pollutant_names):
                try:
                    values[k] = cell.natural_transport_average(
                        name, dispersion_velocity, k, world_receptors)
                except (MetCorError, ValueError, ZeroDivisionError) as exc:
                    logger.error("QTBA failed for cell (%d, %d) %s: %s", i, j, name, exc)
                    values[k] = 0.0
            field.set(i, j, values)

    # ------------------------------------------------------------------
    # Weighting
    # ------------------------------------------------------------------

    def apply_weighting(self, field_name: str, weights: WeightTable) -> None:
        """Scale a computed field by a bin-dependent weight.

        ``CWT`` and ``RTWC`` bin on tagged population, ``QTBA`` on each
        pollutant's natural transport potential sum. Not idempotent.
        """
        name = field_name.upper()
        if name == CWT:
            for i, j, vec in self.fields[CWT].allocated():
                cell = self.cells[i][j]
                weight = weights.lookup(cell.tagged_population)
                for k in range(len(vec)):
                    if not cell.is_cwt_excluded(k):
                        vec[k] *= weight
        elif name in ("RTWC", FINAL_CWT):
            for i, j, vec in self.fields[FINAL_CWT].allocated():
                vec *= weights.lookup(self.cells[i][j].tagged_population)
        elif name == QTBA:
            for i, j, vec in self.fields[QTBA].allocated():
                potentials = self.cells[i][j].transport_potential_sum
                for k in range(len(vec)):
                    if vec[k] != QTBA_MISSING:
                        vec[k] *= weights.lookup(potentials[k])
        else:
            raise ValueError(f"cannot weight field {field_name!r}")

    # ------------------------------------------------------------------
    # Export accessors
    # ------------------------------------------------------------------

    def _field(self, field_name: str) -> CellField:
        name = field_name.upper()
        if name == "RTWC":
            name = FINAL_CWT
        try:
            return self.fields[name]
        except KeyError:
            raise ValueError(f"unknown field {field_name!r}") from None

    def raster(self, field_name: str, pollutant_index: int, no_data: float) -> np.ndarray:
        """Field as a ``(rows, nx)`` matrix, northernmost band first.

        Northern bands run from the top down to the equator, followed by the
        southern bands (if any) in increasing index. Unallocated or NaN
        entries become *no_data*.
        """
        field = self._field(field_name)
        rows = [self.north_rows - r - 1 for r in range(self.north_rows)]
        rows.extend(range(self.north_rows, self.ny))

        out = np.full((len(rows), self.nx), no_data, dtype=np.float64)
        for r, j in enumerate(rows):
            for i in range(self.nx):
                vec = field.get(i, j)
                if vec is None or pollutant_index >= len(vec):
                    continue
                value = vec[pollutant_index]
                if not np.isnan(value):
                    out[r, i] = value
        return out

    def scatter(
        self,
        field_name: str,
        no_data: float,
        by_unique_trajectory_count: bool = False,
    ) -> list[tuple]:
        """One ``(population, value...)`` tuple per cell in cell order.

        Population is the tagged population, or the unique tagged
        trajectory count when *by_unique_trajectory_count* is set.
        """
        field = self._field(field_name)
        n = self.pollutant_count
        rows = []
        for i, j, cell in self.iter_cells():
            key = (cell.unique_trajectories(only_tagged=True)
                   if by_unique_trajectory_count else cell.tagged_population)
            vec = field.get(i, j)
            if vec is None:
                values = [no_data] * n
            else:
                values = [no_data if np.isnan(v) else float(v) for v in vec[:n]]
            rows.append((key, *values))
        return rows

    def _histogram_quantity(self, cell: GridCell, quantity: str) -> int:
        if quantity == "population":
            return cell.population
        if quantity == "tagged_population":
            return cell.tagged_population
        if quantity == "unique_trajectories":
            return cell.unique_trajectories(only_tagged=True)
        raise ValueError(
            f"histogram quantity must be one of {HISTOGRAM_QUANTITIES}, got {quantity!r}")

    def histogram(
        self,
        intervals: int,
        quantity: str = "population",
    ) -> tuple[np.ndarray, np.ndarray]:
        """Bin cells by *quantity* into *intervals* equal-width bins.

        Bin width is ``ceil(max/intervals)``; the maximum is clamped into
        the last bin. Population quantities add the cell's value to its bin,
        ``unique_trajectories`` adds one per cell.

        Returns
        -------
        freq : np.ndarray
            Per-bin frequency.
        lower_edges : np.ndarray
            Lower edge of each bin, ``b * width``; all zero when no cell
            has a positive value.
        """
        if intervals < 1:
            raise ValueError(f"intervals must be >= 1, got {intervals}")
        values = [self._histogram_quantity(c, quantity) for _, _, c in self.iter_cells()]
        freq = np.zeros(intervals, dtype=np.int64)
        top = max(values, default=0)
        if top <= 0:
            return freq, np.zeros(intervals, dtype=np.int64)

        spacing = int(math.ceil(top / intervals))
        for value in values:
            if value <= 0:
                continue
            b = min(value // spacing, intervals - 1)
            freq[b] += 1 if quantity == "unique_trajectories" else value
        return freq, np.arange(intervals, dtype=np.int64) * spacing
