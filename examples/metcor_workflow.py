"""Complete pymetcor workflow from a METCOR configuration block.

This example demonstrates:
1. Loading a ``&METCOR`` run configuration
2. Running PSCF, CWT, QTBA and RTWC over back-trajectory endpoints
3. Inspecting the grid and the RTWC outcome
4. Writing the fields to NetCDF (requires the optional netCDF4 dependency)
"""

import logging
import sys
from pathlib import Path

from pymetcor.analysis.runner import MetCorAnalysis
from pymetcor.data.config_parser import load_analysis_config, write_metcor_cfg
from pymetcor.io.grid_writer import write_netcdf


def main(cfg_path: str = "metcor.cfg"):
    """Run the configured analysis and summarise its outputs."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # ========================================================================
    # 1. Load Configuration
    # ========================================================================
    print("Loading configuration...")
    config = load_analysis_config(cfg_path)
    print(write_metcor_cfg(config))

    # ========================================================================
    # 2. Run Analysis
    # ========================================================================
    print("Running analysis...")
    analysis = MetCorAnalysis(config)
    written = analysis.run()
    print(f"✓ Wrote {len(written)} files under {config.output_dir}")

    # ========================================================================
    # 3. Inspect Results
    # ========================================================================
    grid = analysis.grid
    print(f"  Grid: {grid.nx}×{grid.ny} cells, {grid.population} endpoints, "
          f"{grid.tagged_population} tagged")
    print(f"  Receptors: {sorted(grid.receptors())}")
    if analysis.rtwc_result is not None:
        result = analysis.rtwc_result
        print(f"  RTWC: {result.iterations} iterations, converged={result.converged}")

    # ========================================================================
    # 4. NetCDF Export
    # ========================================================================
    fields = [name for name, enabled in (("PSCF", config.pscf), ("CWT", config.cwt),
                                         ("QTBA", config.qtba), ("RTWC", config.rtwc))
              if enabled]
    try:
        path = Path(config.output_dir) / "fields.nc"
        write_netcdf(path, grid, fields, analysis.data.pollutants, config.no_data_value)
        print(f"✓ NetCDF written to {path}")
    except ImportError as exc:
        print(f"Skipping NetCDF export: {exc}")


if __name__ == "__main__":
    main(*sys.argv[1:2])
