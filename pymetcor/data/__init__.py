"""Data input modules."""

from pymetcor.data.config_parser import (
    load_analysis_config,
    parse_analysis_config,
    parse_metcor_cfg,
    write_metcor_cfg,
)
from pymetcor.data.correlated_data import (
    CorrelatedData,
    CorrelatedSample,
    compute_thresholds,
    read_correlated_data,
    read_correlated_string,
    tag_grid,
    window_trajectory_ids,
)
from pymetcor.data.tdump_reader import (
    CmcData,
    TdumpData,
    TrajectoryPoint,
    cmc_to_points,
    endpoints_to_points,
    load_trajectories,
    read_cmc,
    read_cmc_string,
    read_tdump,
    read_tdump_string,
)

__all__ = [
    # Config parser
    'load_analysis_config',
    'parse_analysis_config',
    'parse_metcor_cfg',
    'write_metcor_cfg',
    # Correlated data
    'CorrelatedData',
    'CorrelatedSample',
    'compute_thresholds',
    'read_correlated_data',
    'read_correlated_string',
    'tag_grid',
    'window_trajectory_ids',
    # Trajectory reader
    'CmcData',
    'TdumpData',
    'TrajectoryPoint',
    'cmc_to_points',
    'endpoints_to_points',
    'load_trajectories',
    'read_cmc',
    'read_cmc_string',
    'read_tdump',
    'read_tdump_string',
]
