"""Core grid model, field engines and data models."""

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

__all__ = [
    # Grid
    'CellField',
    'GridCell',
    'QTBA_MISSING',
    'SpatialGrid',
    # Weights
    'ContinuousWeightTable',
    'IntegerWeightTable',
    'WeightRange',
    'WeightTable',
    # Models
    'AnalysisConfig',
    'DataValue',
    'GeoPoint',
    'RTWCResult',
    'SmoothingParams',
    # Exceptions
    'ConfigParseError',
    'CorrelatedDataError',
    'LengthMismatchError',
    'MetCorError',
    'NotFoundError',
    'TrajectoryFileError',
]
