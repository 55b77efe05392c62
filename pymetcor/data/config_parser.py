"""METCOR run configuration parser and writer.

A run is configured by a Fortran namelist style block::

    &METCOR
     LONEXT = 360.0, LATEXT = 90.0, DLON = 1.0, DLAT = 1.0,
     TRAJFILES = 'tdump_a;tdump_b',
     DATAFILE = 'samples.txt',
     POLLUTANTS = 'SO4 NO3',
     THRESH = 'percentile', PERCENTILE = 0.75,
     CWT = .TRUE., RTWC = .TRUE., RTWCMODE = 3,
    /

Keys are case-insensitive. The block is parsed into a dict of
:class:`~pymetcor.core.models.AnalysisConfig` field values and can be written
back from a config.
"""

from __future__ import annotations

import logging
import re
from dataclasses import fields as dataclass_fields
from pathlib import Path

from pymetcor.core.models import (
    RTWC_MODES,
    THRESHOLD_METHODS,
    TRAJECTORY_FORMATS,
    AnalysisConfig,
    ConfigParseError,
    SmoothingParams,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Key map
# ---------------------------------------------------------------------------

# Mapping from namelist keys to AnalysisConfig field names + types
_METCOR_KEY_MAP: dict[str, tuple[str, type]] = {
    "LONEXT": ("lon_extent", float),
    "LATEXT": ("lat_extent", float),
    "DLON": ("d_lon", float),
    "DLAT": ("d_lat", float),
    "TRAJFILES": ("trajectory_files", list),
    "DATAFILE": ("correlated_data_file", str),
    "OUTDIR": ("output_dir", str),
    "POLLUTANTS": ("pollutants", list),
    "THRESH": ("threshold_method", str),
    "PERCENTILE": ("percentile", float),
    "PSCF": ("pscf", bool),
    "CWT": ("cwt", bool),
    "RTWC": ("rtwc", bool),
    "QTBA": ("qtba", bool),
    "LOGCWT": ("log_transform", bool),
    "SMOOTHCWT": ("smooth_cwt", bool),
    "UNIQUE": ("by_unique_trajectory_count", bool),
    "RTWCMODE": ("rtwc_mode", int),
    "CONVERGE": ("convergence_percent", float),
    "MAXITER": ("max_iterations", int),
    "FILTLEN": ("filter_length", int),
    "POLYDEG": ("poly_degree", int),
    "CONFINT": ("confidence", float),
    "NODATA": ("no_data_value", float),
    "DISPVEL": ("dispersion_velocity", float),
    "ZONE": ("zone_hours", int),
    "INCR": ("increment_hours", int),
    "CENTURY": ("century_start", int),
    "TRAJFMT": ("trajectory_format", str),
    "CMCCOLS": ("cmc_columns", int),
    "PSCFWTS": ("pscf_weights_file", str),
    "CWTWTS": ("cwt_weights_file", str),
    "QTBAWTS": ("qtba_weights_file", str),
    "HISTINT": ("histogram_intervals", int),
}

_SMOOTHING_FIELDS = ("filter_length", "poly_degree", "confidence")

_PAIR_RE = re.compile(
    r"(\w+)\s*=\s*('[^']*'|\"[^\"]*\"|[^,\n]+)"
)


def _split_list(value: str) -> list[str]:
    sep = ";" if ";" in value else None
    return [item.strip() for item in value.split(sep) if item.strip()]


def _convert(key: str, raw: str, field_type: type, line_number: int):
    val = raw.strip().rstrip(",").strip()
    quoted = len(val) >= 2 and val[0] == val[-1] and val[0] in "'\""
    if quoted:
        val = val[1:-1]

    if field_type is bool:
        # Fortran booleans: .TRUE., .FALSE., T, F, 1, 0
        val_upper = val.upper().strip(".")
        if val_upper in ("TRUE", "T", "1"):
            return True
        if val_upper in ("FALSE", "F", "0"):
            return False
        raise ConfigParseError(f"Cannot parse logical '{val}'",
                               line_number=line_number, expected=".TRUE. or .FALSE.",
                               key=key)
    if field_type is int:
        try:
            return int(float(val))
        except ValueError:
            raise ConfigParseError(f"Cannot parse integer '{val}'",
                                   line_number=line_number, expected="integer", key=key)
    if field_type is float:
        try:
            return float(val)
        except ValueError:
            raise ConfigParseError(f"Cannot parse float '{val}'",
                                   line_number=line_number, expected="float", key=key)
    if field_type is list:
        return _split_list(val)
    return val


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_metcor_cfg(text: str) -> dict:
    """Parse a ``&METCOR`` namelist block into a raw dictionary.

    Parameters
    ----------
    text : str
        Full text of the configuration file.

    Returns
    -------
    dict
        Values keyed by AnalysisConfig field name; smoothing keys are kept
        flat (``filter_length``, ``poly_degree``, ``confidence``).

    Raises
    ------
    ConfigParseError
        If a value cannot be converted to its key's type.
    """
    result: dict = {}

    body = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("!"):
            body.append("")
            continue
        if re.match(r"&METCOR\b", stripped, flags=re.IGNORECASE):
            stripped = stripped[len("&METCOR"):].strip()
        stripped = re.sub(r"\s/\s*$", "", stripped)
        if stripped in ("/", "") or re.match(r"&END\b", stripped, flags=re.IGNORECASE):
            body.append("")
            continue
        body.append(stripped)
    content = "\n".join(body)

    for match in _PAIR_RE.finditer(content):
        key = match.group(1).strip().upper()
        line_number = content.count("\n", 0, match.start()) + 1
        if key not in _METCOR_KEY_MAP:
            logger.warning("Ignoring unknown METCOR key %s at line %d", key, line_number)
            continue
        field_name, field_type = _METCOR_KEY_MAP[key]
        result[field_name] = _convert(key, match.group(2), field_type, line_number)

    return result


def _validate(config: AnalysisConfig) -> None:
    if config.d_lon <= 0 or config.d_lat <= 0:
        raise ConfigParseError("Cell size must be positive", key="DLON/DLAT",
                               expected="positive float")
    if config.lon_extent <= 0 or config.lat_extent <= 0:
        raise ConfigParseError("Grid extent must be positive", key="LONEXT/LATEXT",
                               expected="positive float")
    if config.lat_extent > 180:
        raise ConfigParseError("Latitude extent exceeds 180 degrees", key="LATEXT",
                               expected="0 < LATEXT <= 180")
    if config.threshold_method not in THRESHOLD_METHODS:
        raise ConfigParseError(f"Unknown threshold method '{config.threshold_method}'",
                               key="THRESH", expected=" | ".join(THRESHOLD_METHODS))
    if config.rtwc_mode not in RTWC_MODES:
        raise ConfigParseError(f"Unknown RTWC mode {config.rtwc_mode}",
                               key="RTWCMODE", expected="1, 2, 3 or 4")
    if config.max_iterations < 1:
        raise ConfigParseError("Iteration budget must be at least 1",
                               key="MAXITER", expected="integer >= 1")
    if not 0.0 < config.smoothing.confidence < 1.0:
        raise ConfigParseError("Confidence level must lie in (0, 1)",
                               key="CONFINT", expected="0 < CONFINT < 1")
    if config.histogram_intervals < 1:
        raise ConfigParseError("Histogram needs at least one interval",
                               key="HISTINT", expected="integer >= 1")
    if config.increment_hours < 1:
        raise ConfigParseError("Tagging increment must be at least one hour",
                               key="INCR", expected="integer >= 1")
    if config.trajectory_format not in TRAJECTORY_FORMATS:
        raise ConfigParseError(f"Unknown trajectory format '{config.trajectory_format}'",
                               key="TRAJFMT", expected=" | ".join(TRAJECTORY_FORMATS))
    if config.trajectory_format == "cmc" and config.cmc_columns < 3:
        raise ConfigParseError("CMC rows need at least three columns",
                               key="CMCCOLS", expected="integer >= 3")


def parse_analysis_config(text: str) -> AnalysisConfig:
    """Parse and validate a ``&METCOR`` block into an AnalysisConfig."""
    raw = parse_metcor_cfg(text)
    smoothing = SmoothingParams(**{k: raw.pop(k) for k in _SMOOTHING_FIELDS if k in raw})
    config = AnalysisConfig(smoothing=smoothing, **raw)
    _validate(config)
    return config


def load_analysis_config(path: str | Path) -> AnalysisConfig:
    return parse_analysis_config(Path(path).read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _format_value(value, field_type: type) -> str:
    if field_type is bool:
        return ".TRUE." if value else ".FALSE."
    if field_type is list:
        return "'" + ";".join(value) + "'"
    if field_type is str:
        return f"'{value}'"
    return str(value)


def write_metcor_cfg(config: AnalysisConfig) -> str:
    """Render *config* as a ``&METCOR`` namelist block."""
    values = {f.name: getattr(config, f.name) for f in dataclass_fields(config)}
    for name in _SMOOTHING_FIELDS:
        values[name] = getattr(config.smoothing, name)

    lines = ["&METCOR"]
    for key, (field_name, field_type) in _METCOR_KEY_MAP.items():
        value = values.get(field_name)
        if value is None:
            continue
        lines.append(f" {key} = {_format_value(value, field_type)},")
    lines.append("/")
    return "\n".join(lines) + "\n"
