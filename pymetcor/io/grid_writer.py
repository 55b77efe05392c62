"""Writers for trajectory-statistics fields, scatter lists and histograms.

Rasters are written as ESRI ASCII grids with the northernmost band first,
matching :meth:`SpatialGrid.raster`. NetCDF output is available when the
optional ``netCDF4`` dependency is installed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import numpy as np

from pymetcor.core.spatial_grid import SpatialGrid


def _fmt(value: float) -> str:
    return f"{value:.3f}"


# ---------------------------------------------------------------------------
# ESRI ASCII raster
# ---------------------------------------------------------------------------

def raster_header(grid: SpatialGrid, nrows: int, no_data: float) -> list[str]:
    lines = [
        f"ncols {grid.nx}",
        f"nrows {nrows}",
        f"xllcorner {_fmt(0.0)}",
        f"yllcorner {_fmt(grid.lat_floor)}",
    ]
    if grid.d_lon == grid.d_lat:
        lines.append(f"cellsize {grid.d_lon}")
    else:
        lines.append(f"dx {grid.d_lon}")
        lines.append(f"dy {grid.d_lat}")
    lines.append(f"NODATA_value {_fmt(no_data)}")
    return lines


def raster_string(
    grid: SpatialGrid,
    field_name: str,
    pollutant_index: int,
    no_data: float = -1.0,
) -> str:
    """Return one pollutant of a field as ESRI ASCII grid text."""
    matrix = grid.raster(field_name, pollutant_index, no_data)
    lines = raster_header(grid, matrix.shape[0], no_data)
    for row in matrix:
        lines.append("\t".join(_fmt(v) for v in row))
    return "\n".join(lines) + "\n"


def write_raster(
    filepath: str | Path,
    grid: SpatialGrid,
    field_name: str,
    pollutant_index: int,
    no_data: float = -1.0,
) -> None:
    """Write one pollutant of a field to an ESRI ASCII grid file.

    Parameters
    ----------
    filepath : str or Path
        Output file path; parent directories are created.
    grid : SpatialGrid
        Grid holding the computed field.
    field_name : str
        ``PSCF``, ``CWT``, ``RTWC`` (finalized CWT) or ``QTBA``.
    pollutant_index : int
        Index of the pollutant in the run's pollutant list.
    no_data : float
        Value written for unallocated cells.
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(raster_string(grid, field_name, pollutant_index, no_data),
                    encoding="utf-8")


# ---------------------------------------------------------------------------
# Scatter lists and histograms
# ---------------------------------------------------------------------------

def write_scatter(
    filepath: str | Path,
    rows: Sequence[Sequence[float]],
    header: Sequence[str],
) -> None:
    """Write ``(population, value...)`` rows as tab-separated text."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["\t".join(header)]
    for row in rows:
        key, *values = row
        lines.append("\t".join([str(int(key))] + [_fmt(v) for v in values]))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def histogram_lines(freq: Sequence[int], lower_edges: Sequence[int]) -> list[str]:
    return [f"{int(edge)}\t{int(count)}" for edge, count in zip(lower_edges, freq)]


def write_histogram(
    filepath: str | Path,
    freq: Sequence[int],
    lower_edges: Sequence[int],
) -> None:
    """Write one ``lower_edge<TAB>frequency`` line per histogram bin."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(histogram_lines(freq, lower_edges)) + "\n", encoding="utf-8")


def write_summary(filepath: str | Path, title: str, rows: dict[str, float]) -> None:
    """Write a two-column ``name<TAB>value`` summary table."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [title] + [f"{name}\t{value:.6g}" for name, value in rows.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# NetCDF
# ---------------------------------------------------------------------------

def write_netcdf(
    filepath: str | Path,
    grid: SpatialGrid,
    field_names: Sequence[str],
    pollutant_names: Sequence[str],
    no_data: float = -1.0,
) -> None:
    """Write fields to NetCDF as ``<FIELD>_<pollutant>(lat, lon)`` variables.

    Requires the optional ``netCDF4`` dependency.
    """
    try:
        from netCDF4 import Dataset  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "netCDF4 is required for NetCDF output. "
            "Install with: pip install netCDF4"
        ) from exc

    lons = (np.arange(grid.nx) + 0.5) * grid.d_lon
    band_floors = [grid.cell(0, j).lat_corner for j in range(grid.ny)]
    rows = [grid.north_rows - r - 1 for r in range(grid.north_rows)]
    rows.extend(range(grid.north_rows, grid.ny))
    lats = np.array([band_floors[j] + 0.5 * grid.d_lat for j in rows])

    with Dataset(str(filepath), "w", format="NETCDF4") as ds:
        ds.createDimension("lat", len(lats))
        ds.createDimension("lon", len(lons))
        v_lat = ds.createVariable("lat", "f8", ("lat",))
        v_lon = ds.createVariable("lon", "f8", ("lon",))
        v_lat[:] = lats
        v_lon[:] = lons
        v_lat.units = "degrees_north"
        v_lon.units = "degrees_east"

        variables: dict[str, Any] = {}
        for field_name in field_names:
            for k, pollutant in enumerate(pollutant_names):
                name = f"{field_name.upper()}_{pollutant}"
                var = ds.createVariable(name, "f8", ("lat", "lon"), fill_value=no_data)
                var[:, :] = grid.raster(field_name, k, no_data)
                variables[name] = var
        ds.setncattr("fields", ",".join(variables))
