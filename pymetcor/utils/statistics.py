"""Stateless numeric support routines for the trajectory-statistics fields.

Savitzky-Golay smoothing with mean-value padding, a bisection solver for
two-tailed Student-t quantiles, an error-function approximation, great-circle
distance, and the natural transport potential kernel used by QTBA.

References:
    Press, W.H. et al. (1992) "Numerical Recipes in C", 2nd ed., §6.2, §6.4.
    Keeler, G.J. & Samson, P.J. (1989) Environ. Sci. Technol. 23, 1358-1364.
    Zhou, L. et al. (2004) Atmos. Environ. 38, 4927-4938 (QTBA).
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from scipy.signal import savgol_coeffs

# Equatorial Earth radius (km)
EARTH_RADIUS_KM = 6378.1369

# Natural transport potential returned for an endpoint at the receptor time
ZERO_LAG_POTENTIAL = 1.0e9

_ERFC_COEFFS = (
    -1.26551223, 1.00002368, 0.37409196, 0.09678418, -0.18628806,
    0.27886807, -1.13520398, 1.48851587, -0.82215223, 0.17087277,
)


# ---------------------------------------------------------------------------
# Savitzky-Golay smoothing
# ---------------------------------------------------------------------------

def savgol_half_width(filter_length: int) -> int:
    """Samples on each side of the centre for a requested filter length."""
    if filter_length % 2 == 1:
        return (filter_length - 1) // 2
    return filter_length // 2


def savgol_smooth(
    data: Sequence[float],
    filter_length: int,
    poly_degree: int,
) -> np.ndarray:
    """Smooth a 1-D sequence with a Savitzky-Golay filter.

    The window spans ``2*n + 1`` samples where ``n`` is the half width of
    *filter_length* (an even length is widened by one). Both ends are padded
    with ``2*n`` copies of the mean of the ``2*n`` samples nearest to that
    end before convolving, so the output has the input's length.

    Parameters
    ----------
    data : sequence of float
        Samples to smooth.
    filter_length : int
        Requested filter length (odd lengths are used as given).
    poly_degree : int
        Degree of the local least-squares polynomial.

    Returns
    -------
    np.ndarray
        Smoothed samples, same length as *data*.

    Raises
    ------
    ValueError
        If *poly_degree* is negative or not smaller than the window.
    """
    values = np.asarray(data, dtype=np.float64)
    n = values.size
    if n == 0:
        return values.copy()

    half = savgol_half_width(filter_length)
    if half == 0:
        return values.copy()
    window = 2 * half + 1
    if poly_degree < 0 or poly_degree >= window:
        raise ValueError(
            f"poly_degree must be in [0, {window - 1}] for filter length "
            f"{filter_length}, got {poly_degree}"
        )

    coeffs = savgol_coeffs(window, poly_degree)
    pad = 2 * half
    left = np.full(pad, values[:pad].mean())
    right = np.full(pad, values[-pad:].mean())
    padded = np.concatenate([left, values, right])

    smoothed = np.convolve(padded, coeffs, mode="valid")
    # valid output k is centred on padded index k + half
    return smoothed[half: half + n]


# ---------------------------------------------------------------------------
# Student-t quantiles
# ---------------------------------------------------------------------------

def _series(q: float, start: float, stop: int, offset: int) -> float:
    term = 1.0
    total = term
    k = start
    while k <= stop:
        term = term * q * k / (k - offset)
        total += term
        k += 2
    return total


def student_t_tail(t: float, dof: int) -> float:
    """Two-tailed probability ``P(|T| >= t)`` for *dof* degrees of freedom."""
    t = abs(t)
    th = math.atan(t / math.sqrt(dof))
    sth = math.sin(th)
    cth = math.cos(th)
    if dof == 1:
        return 1.0 - th / (math.pi / 2.0)
    if dof % 2 == 1:
        return 1.0 - (th + sth * cth * _series(cth * cth, 2, dof - 3, -1)) / (math.pi / 2.0)
    return 1.0 - sth * _series(cth * cth, 1, dof - 3, -1)


def student_t_quantile(p: float, dof: int) -> float:
    """Return ``t`` such that the two-tailed area beyond ``±t`` equals *p*.

    Solved by bisection on ``v`` with ``t = 1/v - 1`` until the step drops
    below 1e-6.

    Parameters
    ----------
    p : float
        Two-tailed area, i.e. ``1 - confidence``.
    dof : int
        Degrees of freedom, at least 1.
    """
    if dof < 1:
        raise ValueError(f"degrees of freedom must be >= 1, got {dof}")
    v = 0.5
    dv = 0.5
    t = 0.0
    while dv > 1e-6:
        t = 1.0 / v - 1.0
        dv /= 2.0
        if student_t_tail(t, dof) > p:
            v -= dv
        else:
            v += dv
    return t


# ---------------------------------------------------------------------------
# Error function, distance, transport potential
# ---------------------------------------------------------------------------

def erf(z: float) -> float:
    """Error function via the Chebyshev-fitted erfc of Numerical Recipes.

    Fractional error is below 1.2e-7 everywhere.
    """
    if z == 0:
        return 0.0
    t = 1.0 / (1.0 + 0.5 * abs(z))
    poly = 0.0
    for c in reversed(_ERFC_COEFFS[1:]):
        poly = c + t * poly
    ans = 1.0 - t * math.exp(-z * z + _ERFC_COEFFS[0] + t * poly)
    return ans if z >= 0 else -ans


def haversine_km(lat: float, lon: float, lat_r: float, lon_r: float) -> float:
    """Great-circle distance (km) between a point and a receptor site."""
    half_rad = math.pi / 360.0
    rad = math.pi / 180.0
    a = (math.sin(half_rad * (lat - lat_r)) ** 2
         + math.cos(rad * lat_r) * math.cos(rad * lat)
         * math.sin(half_rad * (lon - lon_r)) ** 2)
    return 2.0 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def natural_transport_potential(
    lag_hours: float,
    distance_km: float,
    dispersion_velocity: float,
) -> float:
    """Gaussian natural transport potential of an endpoint.

    Parameters
    ----------
    lag_hours : float
        Travel time back from the receptor (sign ignored).
    distance_km : float
        Great-circle distance to the receptor, must be non-zero.
    dispersion_velocity : float
        Atmospheric dispersion velocity (km/h).
    """
    lag = abs(lag_hours)
    if lag == 0:
        return ZERO_LAG_POTENTIAL
    spread = 2.0 * dispersion_velocity * lag
    leading = 1.0 / (spread * math.sqrt(2.0 * math.pi) * distance_km)
    return leading * (1.0 - erf(distance_km / (lag * dispersion_velocity * math.sqrt(2.0))))
