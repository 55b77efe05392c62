"""Unit tests for correlated data, thresholds and window tagging."""

from datetime import datetime

import pytest

from pymetcor.core.models import CorrelatedDataError, GeoPoint
from pymetcor.core.spatial_grid import SpatialGrid
from pymetcor.data.correlated_data import (
    compute_thresholds,
    read_correlated_data,
    read_correlated_string,
    tag_grid,
    window_trajectory_ids,
)

SAMPLES = """\
IDATE     ITIME FDATE     FTIME LATR    LONR     SO4   NO3
THRESH    2.5   1.1
20240115  1200  20240115  1500  45.000  -75.000  1.0   4.0
20240115  1530  20240115  1729  45.000  -75.000  2.0   3.0
20240116  0000  20240116  0100  45.000  -75.000  3.0   2.0
20240116  0600  20240116  0700  45.000  -75.000  4.0   1.0
"""


@pytest.fixture
def data():
    return read_correlated_string(SAMPLES)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def test_parse(data):
    assert data.pollutants == ["SO4", "NO3"]
    assert data.file_thresholds == [2.5, 1.1]
    assert len(data.samples) == 4
    assert data.samples[0].receptor_lat == "45.000"
    assert data.column(1).tolist() == [4.0, 3.0, 2.0, 1.0]


def test_times_round_to_hour(data):
    second = data.samples[1]
    assert second.start == datetime(2024, 1, 15, 16)
    assert second.end == datetime(2024, 1, 15, 17)


def test_bad_header():
    with pytest.raises(CorrelatedDataError) as exc_info:
        read_correlated_string("DATE TIME SO4\n")
    assert exc_info.value.line_number == 1


def test_header_without_pollutants():
    with pytest.raises(CorrelatedDataError):
        read_correlated_string("IDATE ITIME FDATE FTIME LATR LONR\n")


def test_row_width_mismatch():
    text = SAMPLES + "20240117  0000  20240117  0100  45.0\n"
    with pytest.raises(CorrelatedDataError) as exc_info:
        read_correlated_string(text)
    assert exc_info.value.line_number == 7


def test_bad_number():
    text = SAMPLES.replace("4.0   1.0", "4.0   n/a")
    with pytest.raises(CorrelatedDataError):
        read_correlated_string(text)


def test_empty():
    with pytest.raises(CorrelatedDataError):
        read_correlated_string("")


def test_missing_file(tmp_path):
    with pytest.raises(CorrelatedDataError):
        read_correlated_data(tmp_path / "absent.txt")


def test_select(data):
    picked = data.select(["no3"])
    assert picked.pollutants == ["NO3"]
    assert picked.file_thresholds == [1.1]
    assert picked.samples[0].values == [4.0]
    assert data.select([]) is data
    with pytest.raises(CorrelatedDataError):
        data.select(["PM25"])


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

def _values(thresholds):
    return [t.value for t in thresholds]


def test_mean_threshold(data):
    assert _values(compute_thresholds(data, "mean")) == pytest.approx([2.5, 2.5])


def test_mean_plus_sd_threshold(data):
    sd = (5.0 / 3.0) ** 0.5
    assert _values(compute_thresholds(data, "mean+1sd")) == pytest.approx([2.5 + sd] * 2)


def test_percentile_threshold(data):
    assert _values(compute_thresholds(data, "percentile", 0.75)) == [3.0, 3.0]
    assert _values(compute_thresholds(data, "percentile", 0.1)) == [1.0, 1.0]
    assert _values(compute_thresholds(data, "percentile", 1.5)) == [1.0, 1.0]


def test_file_threshold(data):
    thresholds = compute_thresholds(data, "file")
    assert [t.name for t in thresholds] == ["SO4", "NO3"]
    assert _values(thresholds) == [2.5, 1.1]


def test_file_threshold_requires_row():
    data = read_correlated_string(SAMPLES.replace("THRESH    2.5   1.1\n", ""))
    with pytest.raises(CorrelatedDataError):
        compute_thresholds(data, "file")


def test_unknown_threshold_method(data):
    with pytest.raises(ValueError):
        compute_thresholds(data, "median")


# ---------------------------------------------------------------------------
# Window tagging
# ---------------------------------------------------------------------------

def test_window_ids():
    ids = window_trajectory_ids(datetime(2024, 1, 15, 12), datetime(2024, 1, 15, 15))
    assert ids == ["2024011512", "2024011513", "2024011514"]


def test_window_ids_increment():
    ids = window_trajectory_ids(datetime(2024, 1, 15, 12), datetime(2024, 1, 15, 18),
                                increment_hours=3)
    assert ids == ["2024011512", "2024011515"]


def test_window_start_always_included():
    start = datetime(2024, 1, 15, 12)
    assert window_trajectory_ids(start, start) == ["2024011512"]


def test_window_zone_shift():
    ids = window_trajectory_ids(datetime(2024, 1, 15, 2), datetime(2024, 1, 15, 4),
                                zone_hours=5)
    assert ids == ["2024011421", "2024011422"]


def test_tag_grid(data):
    grid = SpatialGrid(360.0, 90.0, 1.0, 1.0)
    for traj in ("2024011512", "2024011514", "2024011600", "2024011523"):
        grid.insert(GeoPoint(280.5, 40.5, traj, "500.0,45.0,-75.0,6"))
    assert tag_grid(grid, data) == 3
    cell = grid.cell(280, 40)
    assert cell.tagged_population == 3
    values = {p.trajectory_id: p.get_value("SO4") for p in cell.tagged_points()}
    assert values == {"2024011512": 1.0, "2024011514": 1.0, "2024011600": 3.0}
