"""
spherical.py

Cartesian → spherical projection used when writing newslab PCD files.

The angle rules below are the reference behaviour of the newslab format and
must be reproduced exactly, including the quadrant corrections that are
layered on top of ``atan2`` (which already resolves the quadrant).  As a
consequence a point on the negative x axis gets an azimuth of ``2π`` and a
point below the horizon gets a polar angle beyond ``π``.  Do not replace them
with a single ``atan2`` call: existing newslab consumers depend on these
values.

=========================  ==============================================
Condition                  Result
=========================  ==============================================
distance ≈ 0               azimuth = 0, vertical = 0
z ≈ 0                      polar = π/2
otherwise                  polar = atan2(√(x²+y²), z) + (0 if z > 0 else π)
x ≈ 0 and y ≈ 0            azimuth = 0
x ≈ 0                      azimuth = ±π/2 (sign of y)
x > 0                      azimuth = atan2(y, x)
x ≤ 0, y ≥ 0               azimuth = atan2(y, x) + π
x ≤ 0, y < 0               azimuth = atan2(y, x) − π
always                     vertical = π/2 − polar
=========================  ==============================================

"≈ 0" means ``abs(v) <= EPSILON`` with ``EPSILON`` the float64 machine
epsilon.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Tuple

import numpy as np

EPSILON = float(np.finfo(np.float64).eps)

_HALF_PI = math.pi / 2


class SphericalCoordinates(NamedTuple):
    distance: float
    azimuthal_angle: float
    vertical_angle: float


def _near_zero(v: float) -> bool:
    return abs(v) <= EPSILON


def project(x: float, y: float, z: float) -> SphericalCoordinates:
    """Project one cartesian point to distance / azimuthal / vertical angle."""
    x, y, z = float(x), float(y), float(z)
    distance = math.sqrt(x * x + y * y + z * z)

    if _near_zero(distance):
        return SphericalCoordinates(distance, 0.0, 0.0)

    if _near_zero(z):
        polar_angle = _HALF_PI
    else:
        planar_dist = math.sqrt(x * x + y * y)
        polar_angle = math.atan2(planar_dist, z) + (0.0 if z > 0 else math.pi)

    if _near_zero(x) and _near_zero(y):
        azimuthal_angle = 0.0
    elif _near_zero(x):
        azimuthal_angle = _HALF_PI if y > 0 else -_HALF_PI
    else:
        azimuthal_angle = math.atan2(y, x)
        if x <= 0:
            azimuthal_angle += math.pi if y >= 0 else -math.pi

    return SphericalCoordinates(distance, azimuthal_angle, _HALF_PI - polar_angle)


def project_points(xyz: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Vectorised :func:`project` over an ``(N, 3)`` array.

    Returns:
        ``(distance, azimuthal_angle, vertical_angle)``, each a float64 array
        of shape ``(N,)``.
    """
    pts = np.asarray(xyz, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"Points array must have shape (N, 3), got {pts.shape}.")
    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]

    distance = np.sqrt(x * x + y * y + z * z)
    degenerate = np.abs(distance) <= EPSILON
    x_zero = np.abs(x) <= EPSILON
    y_zero = np.abs(y) <= EPSILON
    z_zero = np.abs(z) <= EPSILON

    planar_dist = np.sqrt(x * x + y * y)
    polar_angle = np.where(
        z_zero,
        _HALF_PI,
        np.arctan2(planar_dist, z) + np.where(z > 0, 0.0, np.pi),
    )

    corrected = np.arctan2(y, x) + np.where(x > 0, 0.0, np.where(y >= 0, np.pi, -np.pi))
    azimuthal_angle = np.where(
        x_zero & y_zero,
        0.0,
        np.where(x_zero, np.where(y > 0, _HALF_PI, -_HALF_PI), corrected),
    )
    vertical_angle = _HALF_PI - polar_angle

    azimuthal_angle = np.where(degenerate, 0.0, azimuthal_angle)
    vertical_angle = np.where(degenerate, 0.0, vertical_angle)
    return distance, azimuthal_angle, vertical_angle
