"""MetCorAnalysis: end-to-end driver for one trajectory-statistics run.

Assembles the ingestion collaborators (tdump reader, correlated data,
thresholds, tagging), the SpatialGrid field engines and the writers:

    build grid → load endpoints → read samples → thresholds → tag
    → PSCF → CWT (optionally smoothed) → QTBA → RTWC
    → write rasters, scatter lists, histograms

QTBA runs before RTWC because RTWC rescales the working concentrations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pymetcor.core.models import (
    AnalysisConfig,
    CorrelatedDataError,
    RTWCResult,
    TrajectoryFileError,
)
from pymetcor.core.spatial_grid import CWT, FINAL_CWT, PSCF, QTBA, SpatialGrid
from pymetcor.core.weights import ContinuousWeightTable, IntegerWeightTable, WeightTable
from pymetcor.data.correlated_data import (
    CorrelatedData,
    compute_thresholds,
    read_correlated_data,
    tag_grid,
)
from pymetcor.data.tdump_reader import load_trajectories
from pymetcor.io.grid_writer import (
    write_histogram,
    write_raster,
    write_scatter,
    write_summary,
)

logger = logging.getLogger(__name__)


class MetCorAnalysis:
    """Run the configured trajectory statistics and write their outputs.

    Parameters
    ----------
    config : AnalysisConfig
        Complete run configuration.

    Attributes
    ----------
    grid : SpatialGrid or None
        The grid of the last run.
    data : CorrelatedData or None
        Correlated samples of the last run, restricted to the pollutants.
    written : list[Path]
        Files written by the last run.
    """

    def __init__(self, config: AnalysisConfig) -> None:
        self.config = config
        self.grid: Optional[SpatialGrid] = None
        self.data: Optional[CorrelatedData] = None
        self.rtwc_result: Optional[RTWCResult] = None
        self.written: list[Path] = []

    # -- Inputs --------------------------------------------------------------

    def _check_inputs(self) -> None:
        cfg = self.config
        if not cfg.trajectory_files:
            raise TrajectoryFileError("No trajectory files configured")
        for path in cfg.trajectory_files:
            if not Path(path).is_file():
                raise TrajectoryFileError(f"Trajectory file not found: {path}")
        if cfg.correlated_data_file is None:
            raise CorrelatedDataError("No correlated data file configured")
        if not Path(cfg.correlated_data_file).is_file():
            raise CorrelatedDataError(
                f"Correlated data file not found: {cfg.correlated_data_file}")

    @staticmethod
    def _weights(path: Optional[str], table_type: type) -> Optional[WeightTable]:
        if path is None:
            return None
        return table_type.from_file(path)

    # -- Run -----------------------------------------------------------------

    def run(self) -> list[Path]:
        """Execute the configured run.

        Returns
        -------
        list[Path]
            Files written.

        Raises
        ------
        TrajectoryFileError, CorrelatedDataError
            If an input file is missing or structurally invalid.
        """
        cfg = self.config
        self._check_inputs()
        self.written = []

        grid = SpatialGrid(cfg.lon_extent, cfg.lat_extent, cfg.d_lon, cfg.d_lat)
        self.grid = grid
        load_trajectories(grid, cfg.trajectory_files, cfg.century_start,
                          cfg.trajectory_format, cfg.cmc_columns)

        data = read_correlated_data(cfg.correlated_data_file).select(cfg.pollutants)
        self.data = data
        names = data.pollutants
        tag_grid(grid, data, cfg.zone_hours, cfg.increment_hours)

        out = Path(cfg.output_dir)
        self._write_histograms(out)

        if cfg.pscf:
            thresholds = compute_thresholds(data, cfg.threshold_method, cfg.percentile)
            grid.compute_pscf(
                thresholds,
                self._weights(cfg.pscf_weights_file, IntegerWeightTable),
                cfg.by_unique_trajectory_count,
            )
            self._write_field(out, PSCF, names)
            header = ["SourceID" if cfg.by_unique_trajectory_count else "NIJ", *names]
            path = out / "HIST" / "PSCF_scatter.txt"
            write_scatter(path,
                          grid.scatter(PSCF, cfg.no_data_value,
                                       cfg.by_unique_trajectory_count),
                          header)
            self._record(path)

        cwt_weights = self._weights(cfg.cwt_weights_file, ContinuousWeightTable)

        if cfg.cwt:
            grid.compute_cwt(names, cfg.log_transform)
            if cfg.smooth_cwt:
                params = cfg.smoothing
                grid.smooth_cwt(names, cfg.no_data_value, params.filter_length,
                                params.poly_degree, params.confidence, cfg.log_transform)
            if cwt_weights is not None:
                grid.apply_weighting(CWT, cwt_weights)
            self._write_field(out, CWT, names)

        if cfg.qtba:
            grid.compute_qtba(names, cfg.dispersion_velocity)
            qtba_weights = self._weights(cfg.qtba_weights_file, ContinuousWeightTable)
            if qtba_weights is not None:
                grid.apply_weighting(QTBA, qtba_weights)
            self._write_field(out, QTBA, names)
            potentials = grid.average_transport_potential()
            path = out / "QTBA_MATRICES" / "transport_potential.txt"
            write_summary(path, "POLLUTANT\tNATURAL TRANSPORT POTENTIAL",
                          dict(zip(names, map(float, potentials))))
            self._record(path)

        if cfg.rtwc:
            self.rtwc_result = grid.run_rtwc(
                names,
                cfg.rtwc_mode,
                cfg.convergence_percent,
                cfg.max_iterations,
                cfg.smoothing,
                cfg.no_data_value,
            )
            if cwt_weights is not None:
                grid.apply_weighting("RTWC", cwt_weights)
            self._write_field(out, FINAL_CWT, names, folder="RTWC")

        logger.info("Run complete: %d files written to %s", len(self.written), out)
        return self.written

    # -- Outputs -------------------------------------------------------------

    def _record(self, path: Path) -> None:
        self.written.append(path)

    def _write_field(self, out: Path, field_name: str, names, folder: str | None = None) -> None:
        folder = folder or field_name
        for k, name in enumerate(names):
            path = out / f"{folder}_MATRICES" / f"{name}.asc"
            write_raster(path, self.grid, field_name, k, self.config.no_data_value)
            self._record(path)

    def _write_histograms(self, out: Path) -> None:
        intervals = self.config.histogram_intervals
        for quantity in ("population", "tagged_population", "unique_trajectories"):
            path = out / "HIST" / f"{quantity}.txt"
            write_histogram(path, *self.grid.histogram(intervals, quantity))
            self._record(path)
        path = out / "HIST" / "averages.txt"
        write_summary(path, "METRIC\tVALUE", {
            "population": float(self.grid.population),
            "tagged_population": float(self.grid.tagged_population),
            "average_tagged_population": self.grid.average_tagged_population(),
        })
        self._record(path)
