"""Utility modules."""

from pymetcor.utils.statistics import (
    EARTH_RADIUS_KM,
    erf,
    haversine_km,
    natural_transport_potential,
    savgol_smooth,
    student_t_quantile,
    student_t_tail,
)

__all__ = [
    'EARTH_RADIUS_KM',
    'erf',
    'haversine_km',
    'natural_transport_potential',
    'savgol_smooth',
    'student_t_quantile',
    'student_t_tail',
]
