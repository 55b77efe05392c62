"""Unit tests for the METCOR namelist configuration parser."""

import logging

import pytest

from pymetcor.core.models import AnalysisConfig, ConfigParseError, SmoothingParams
from pymetcor.data.config_parser import (
    load_analysis_config,
    parse_analysis_config,
    parse_metcor_cfg,
    write_metcor_cfg,
)

CFG = """\
&METCOR
 LONEXT = 180.0, LATEXT = 120.0, DLON = 2.0, DLAT = 2.0,
 TRAJFILES = 'a.tdump;b.tdump',
 DATAFILE = 'samples.txt',
 POLLUTANTS = 'SO4 NO3',
 THRESH = 'percentile', PERCENTILE = 0.9,
! smoothing for mode 3
 RTWC = .TRUE., RTWCMODE = 3, FILTLEN = 7, CONFINT = 0.9,
 QTBA = T, PSCF = .FALSE.,
/
"""


def test_parse_raw_values():
    raw = parse_metcor_cfg(CFG)
    assert raw["lon_extent"] == 180.0
    assert raw["trajectory_files"] == ["a.tdump", "b.tdump"]
    assert raw["pollutants"] == ["SO4", "NO3"]
    assert raw["threshold_method"] == "percentile"
    assert raw["rtwc"] is True
    assert raw["qtba"] is True
    assert raw["pscf"] is False
    assert raw["filter_length"] == 7


def test_parse_analysis_config():
    config = parse_analysis_config(CFG)
    assert isinstance(config, AnalysisConfig)
    assert config.lat_extent == 120.0
    assert config.rtwc_mode == 3
    assert config.smoothing == SmoothingParams(filter_length=7, poly_degree=2, confidence=0.9)
    assert config.correlated_data_file == "samples.txt"
    assert config.cwt is True
    assert config.max_iterations == 1000


def test_keys_are_case_insensitive():
    raw = parse_metcor_cfg("&metcor\n dlon = 0.5, maxiter = 20\n/\n")
    assert raw == {"d_lon": 0.5, "max_iterations": 20}


def test_unknown_key_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="pymetcor.data.config_parser"):
        raw = parse_metcor_cfg("&METCOR\n COLOR = 'blue',\n/\n")
    assert raw == {}
    assert "COLOR" in caplog.text


def test_bad_value_reports_line_and_key():
    with pytest.raises(ConfigParseError) as exc_info:
        parse_metcor_cfg("&METCOR\n DLON = 1.0,\n MAXITER = lots,\n/\n")
    assert exc_info.value.line_number == 3
    assert exc_info.value.key == "MAXITER"


def test_bad_logical():
    with pytest.raises(ConfigParseError):
        parse_metcor_cfg("&METCOR\n CWT = maybe\n/\n")


@pytest.mark.parametrize("line, key", [
    ("DLAT = 0.0", "DLON/DLAT"),
    ("LATEXT = 200.0", "LATEXT"),
    ("THRESH = 'median'", "THRESH"),
    ("RTWCMODE = 7", "RTWCMODE"),
    ("MAXITER = 0", "MAXITER"),
    ("CONFINT = 1.5", "CONFINT"),
    ("HISTINT = 0", "HISTINT"),
    ("INCR = 0", "INCR"),
    ("TRAJFMT = 'arl'", "TRAJFMT"),
    ("TRAJFMT = 'cmc', CMCCOLS = 2", "CMCCOLS"),
])
def test_validation(line, key):
    with pytest.raises(ConfigParseError) as exc_info:
        parse_analysis_config(f"&METCOR\n {line}\n/\n")
    assert exc_info.value.key == key


def test_negative_convergence_defaults():
    config = parse_analysis_config("&METCOR\n CONVERGE = -3.0\n/\n")
    assert config.convergence_percent == 1.0


def test_write_and_reparse(tmp_path):
    config = parse_analysis_config(CFG)
    path = tmp_path / "metcor.cfg"
    path.write_text(write_metcor_cfg(config))
    again = load_analysis_config(path)
    assert again == config


def test_trajectory_format_and_smoothing_keys():
    config = parse_analysis_config(
        "&METCOR\n SMOOTHCWT = .TRUE., TRAJFMT = 'cmc', CMCCOLS = 11\n/\n")
    assert config.smooth_cwt is True
    assert config.trajectory_format == "cmc"
    assert config.cmc_columns == 11


def test_trajectory_format_defaults():
    config = parse_analysis_config("&METCOR\n DLON = 2.0\n/\n")
    assert config.smooth_cwt is False
    assert config.trajectory_format == "tdump"
    assert config.cmc_columns == 9


def test_write_includes_format_keys():
    config = AnalysisConfig(smooth_cwt=True, trajectory_format="cmc", cmc_columns=10)
    text = write_metcor_cfg(config)
    assert " SMOOTHCWT = .TRUE.," in text
    assert " TRAJFMT = 'cmc'," in text
    assert " CMCCOLS = 10," in text
    assert parse_analysis_config(text) == config
