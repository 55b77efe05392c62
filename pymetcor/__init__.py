"""pymetcor - trajectory statistics for atmospheric source apportionment.

Bins back-trajectory endpoints into a latitude/longitude grid, tags them
with correlated concentration measurements, and computes PSCF, CWT, RTWC
and QTBA fields.

Package Structure:
    core/       - Grid model, field engines, weights and data models
    data/       - Data input (run config, tdump and CMC readers, correlated data)
    io/         - Field writers (ASCII raster, scatter, histogram, NetCDF)
    utils/      - Numeric support (smoothing, Student-t, erf, distance)
    analysis/   - End-to-end run driver
"""

__version__ = "0.1.0"

# Core
from pymetcor.core.grid_cell import QTBA_MISSING, GridCell
from pymetcor.core.models import (
    AnalysisConfig,
    ConfigParseError,
    CorrelatedDataError,
    DataValue,
    GeoPoint,
    LengthMismatchError,
    MetCorError,
    NotFoundError,
    RTWCResult,
    SmoothingParams,
    TrajectoryFileError,
)
from pymetcor.core.spatial_grid import CellField, SpatialGrid
from pymetcor.core.weights import (
    ContinuousWeightTable,
    IntegerWeightTable,
    WeightRange,
    WeightTable,
)

# Data
from pymetcor.data.config_parser import (
    load_analysis_config,
    parse_analysis_config,
    parse_metcor_cfg,
    write_metcor_cfg,
)
from pymetcor.data.correlated_data import (
    CorrelatedData,
    compute_thresholds,
    read_correlated_data,
    tag_grid,
)
from pymetcor.data.tdump_reader import load_trajectories, read_cmc, read_tdump

# IO
from pymetcor.io.grid_writer import write_netcdf, write_raster

# Analysis
from pymetcor.analysis.runner import MetCorAnalysis

__all__ = [
    # Core - Grid
    'CellField',
    'GridCell',
    'QTBA_MISSING',
    'SpatialGrid',
    # Core - Weights
    'ContinuousWeightTable',
    'IntegerWeightTable',
    'WeightRange',
    'WeightTable',
    # Core - Models
    'AnalysisConfig',
    'DataValue',
    'GeoPoint',
    'RTWCResult',
    'SmoothingParams',
    # Core - Exceptions
    'ConfigParseError',
    'CorrelatedDataError',
    'LengthMismatchError',
    'MetCorError',
    'NotFoundError',
    'TrajectoryFileError',
    # Data
    'CorrelatedData',
    'compute_thresholds',
    'load_analysis_config',
    'load_trajectories',
    'parse_analysis_config',
    'parse_metcor_cfg',
    'read_cmc',
    'read_correlated_data',
    'read_tdump',
    'tag_grid',
    'write_metcor_cfg',
    # IO
    'write_netcdf',
    'write_raster',
    # Analysis
    'MetCorAnalysis',
]
