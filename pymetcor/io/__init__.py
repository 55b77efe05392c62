"""Writers for computed fields.

- ESRI ASCII rasters of PSCF, CWT, RTWC and QTBA fields
- tab-separated scatter lists, histograms and summaries
- NetCDF (optional ``netCDF4`` dependency)
"""

from pymetcor.io.grid_writer import (
    raster_string,
    write_histogram,
    write_netcdf,
    write_raster,
    write_scatter,
    write_summary,
)

__all__ = [
    "raster_string",
    "write_histogram",
    "write_netcdf",
    "write_raster",
    "write_scatter",
    "write_summary",
]
