"""Property-based tests for thresholds, window tagging and configuration."""

from __future__ import annotations

from datetime import datetime, timedelta

from hypothesis import given, settings, strategies as st

from pymetcor.core.models import AnalysisConfig, SmoothingParams
from pymetcor.data.config_parser import parse_analysis_config, write_metcor_cfg
from pymetcor.data.correlated_data import (
    CorrelatedData,
    CorrelatedSample,
    compute_thresholds,
    window_trajectory_ids,
)

finite = dict(allow_nan=False, allow_infinity=False)

valid_datetime = st.builds(
    datetime,
    year=st.integers(min_value=2000, max_value=2049),
    month=st.integers(min_value=1, max_value=12),
    day=st.integers(min_value=1, max_value=28),
    hour=st.integers(min_value=0, max_value=23),
)


def _table(values):
    when = datetime(2024, 1, 1)
    return CorrelatedData(
        pollutants=["A"],
        samples=[CorrelatedSample(when, when, "45.0", "-75.0", [v]) for v in values],
    )


# ---------------------------------------------------------------------------
# Property 1: window ids start at the window and step evenly
# ---------------------------------------------------------------------------

@given(start=valid_datetime,
       hours=st.integers(min_value=0, max_value=72),
       step=st.integers(min_value=1, max_value=12),
       zone=st.integers(min_value=-12, max_value=12))
@settings(max_examples=200)
def test_property_01_window_ids(start, hours, step, zone):
    ids = window_trajectory_ids(start, start + timedelta(hours=hours), zone, step)
    times = [datetime.strptime(i, "%Y%m%d%H") for i in ids]
    assert times[0] == start - timedelta(hours=zone)
    assert len(ids) == max(1, -(-hours // step))
    assert all(b - a == timedelta(hours=step) for a, b in zip(times, times[1:]))


# ---------------------------------------------------------------------------
# Property 2: percentile thresholds are sample values
# ---------------------------------------------------------------------------

@given(values=st.lists(st.floats(min_value=0.0, max_value=1e4, **finite), min_size=1, max_size=50),
       p=st.floats(min_value=-0.5, max_value=1.5, **finite))
@settings(max_examples=200)
def test_property_02_percentile_is_sample(values, p):
    limit = compute_thresholds(_table(values), "percentile", p)[0].value
    assert limit in values
    assert min(values) <= limit <= max(values)


@given(values=st.lists(st.floats(min_value=0.0, max_value=1e4, **finite), min_size=2, max_size=50))
@settings(max_examples=100)
def test_property_03_mean_ordering(values):
    data = _table(values)
    mean = compute_thresholds(data, "mean")[0].value
    upper = compute_thresholds(data, "mean+1sd")[0].value
    assert upper >= mean - 1e-9


# ---------------------------------------------------------------------------
# Property 4: namelist round trip
# ---------------------------------------------------------------------------

name_st = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789", min_size=1, max_size=6)

config_st = st.builds(
    AnalysisConfig,
    lon_extent=st.sampled_from([90.0, 180.0, 360.0]),
    lat_extent=st.sampled_from([45.0, 90.0, 120.0, 180.0]),
    d_lon=st.sampled_from([0.5, 1.0, 2.5]),
    d_lat=st.sampled_from([0.5, 1.0, 2.5]),
    trajectory_files=st.lists(name_st.map(lambda s: f"tdump_{s}"), max_size=3),
    pollutants=st.lists(name_st, max_size=4),
    threshold_method=st.sampled_from(["mean", "mean+1sd", "percentile", "file"]),
    percentile=st.floats(min_value=0.05, max_value=1.0, **finite),
    pscf=st.booleans(),
    rtwc=st.booleans(),
    rtwc_mode=st.integers(min_value=1, max_value=4),
    max_iterations=st.integers(min_value=1, max_value=5000),
    smoothing=st.builds(SmoothingParams,
                        filter_length=st.integers(min_value=3, max_value=15),
                        poly_degree=st.integers(min_value=0, max_value=3),
                        confidence=st.floats(min_value=0.5, max_value=0.99, **finite)),
    zone_hours=st.integers(min_value=-12, max_value=12),
    smooth_cwt=st.booleans(),
    trajectory_format=st.sampled_from(["tdump", "cmc"]),
    cmc_columns=st.integers(min_value=3, max_value=20),
)


@given(config=config_st)
@settings(max_examples=100)
def test_property_04_namelist_round_trip(config):
    assert parse_analysis_config(write_metcor_cfg(config)) == config
