"""Unit tests for GeoPoint, DataValue and the weight tables."""

import pytest

from pymetcor.core.models import (
    AnalysisConfig,
    ConfigParseError,
    DataValue,
    GeoPoint,
    LengthMismatchError,
    NotFoundError,
)
from pymetcor.core.weights import (
    ContinuousWeightTable,
    IntegerWeightTable,
    WeightRange,
)


def _point(traj="2013010100", tag="500.0,45.434,-75.676,12"):
    return GeoPoint(284.3, 45.1, traj, tag)


# ---------------------------------------------------------------------------
# GeoPoint
# ---------------------------------------------------------------------------

def test_tag_components():
    p = _point()
    assert p.receptor == ("45.434", "-75.676")
    assert p.lag_hours == 12.0
    assert p.receptor_key == "500.0,45.434,-75.676"
    assert p.trajectory_key == ("2013010100", "500.0,45.434,-75.676")


def test_three_field_tag():
    p = GeoPoint(10.0, 10.0, "x", "45.0,-75.0,6")
    assert p.receptor == ("45.0", "-75.0")
    assert p.lag_hours == 6.0


def test_point_without_tag_has_no_key():
    assert GeoPoint(1.5, 1.5, "x").trajectory_key is None
    assert GeoPoint(1.5, 1.5, None, "1,2,3").trajectory_key is None
    assert GeoPoint(1.5, 1.5).receptor is None


def test_matches_receptor_numerically():
    p = _point()
    assert p.matches_receptor("45.4340", "-75.676")
    assert p.matches_receptor(45.434, -75.676)
    assert not p.matches_receptor("45.5", "-75.676")


def test_add_data_copies_values():
    data = [DataValue("SO4", 2.0), DataValue("NO3", 1.0)]
    p = _point()
    p.add_data(data)
    data[0].value = 99.0
    assert p.get_value("SO4") == 2.0
    assert p.has_data


def test_add_data_accepts_pairs():
    p = _point()
    p.add_data([("SO4", 2), ("NO3", 1.5)])
    assert p.get_value("NO3") == 1.5


@pytest.mark.parametrize("bad", [None, []])
def test_add_empty_data_raises(bad):
    p = _point()
    with pytest.raises(LengthMismatchError):
        p.add_data(bad)
    assert not p.has_data


def test_original_values_written_once():
    p = _point()
    p.add_data([("SO4", 2.0)])
    p.add_data([("SO4", 7.0)])
    assert p.get_value("SO4") == 7.0
    assert p.get_original_value(0) == 2.0


def test_lookup_errors():
    p = _point()
    p.add_data([("SO4", 2.0)])
    with pytest.raises(NotFoundError):
        p.get_value("NO3")
    with pytest.raises(NotFoundError):
        p.get_original_value(1)
    with pytest.raises(NotFoundError):
        p.get_original_value(-1)


def test_set_value_ignores_bad_index():
    p = _point()
    p.set_value(0, 5.0)
    assert not p.has_data
    p.add_data([("SO4", 2.0)])
    p.set_value(3, 5.0)
    p.set_value(0, 4.0)
    assert p.get_value("SO4") == 4.0
    assert p.get_original_value(0) == 2.0


def test_lag_without_tag_raises():
    with pytest.raises(ValueError):
        GeoPoint(1.0, 1.0, "x").lag_hours


# ---------------------------------------------------------------------------
# Weight tables
# ---------------------------------------------------------------------------

def test_weight_lookup_first_match_wins():
    table = IntegerWeightTable([(0, 10, 0.5), (5, 20, 0.8)])
    assert table.lookup(7) == 0.5
    assert table.lookup(15) == 0.8
    assert table.lookup(10) == 0.5


def test_weight_lookup_default():
    assert IntegerWeightTable([(1, 2, 0.3)]).lookup(50) == 1.0
    assert IntegerWeightTable().lookup(3) == 1.0


def test_continuous_weight_table():
    table = ContinuousWeightTable([WeightRange(0.0, 1e-4, 0.2), (1e-4, 1.0, 0.7)])
    assert table.lookup(5e-5) == 0.2
    assert table.lookup(0.5) == 0.7
    assert table.lookup(2.0) == 1.0


def test_fractional_bounds_kept_by_continuous_table():
    text = "1.5 3 0.5\n"
    continuous = ContinuousWeightTable.from_string(text)
    assert continuous.lookup(1) == 1.0
    assert continuous.lookup(2) == 0.5
    # integer tables truncate the lower bound to 1
    assert IntegerWeightTable.from_string(text).lookup(1) == 0.5


def test_default_pscf_table_is_all_ones():
    table = IntegerWeightTable.default_pscf()
    assert len(table) == 5
    assert all(table.lookup(n) == 1.0 for n in range(0, 30))


def test_weight_table_from_string():
    table = IntegerWeightTable.from_string("# low high weight\n0 3 0.1\n4, 9, 0.5\n\n")
    assert len(table) == 2
    assert table.lookup(2) == 0.1
    assert table.lookup(9) == 0.5


def test_weight_table_from_string_bad_line():
    with pytest.raises(ConfigParseError) as info:
        IntegerWeightTable.from_string("0 3 0.1\n4 9\n")
    assert info.value.line_number == 2


def test_negative_convergence_defaults_to_one_percent():
    assert AnalysisConfig(convergence_percent=-5).convergence_percent == 1.0
