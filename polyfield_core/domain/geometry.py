"""
Measurement geometry.

Conventions:
- Vertical angles are measured from the zenith, so a level sight is 90 deg
  and horizontal distance = slope distance * sin(vertical angle).
- Horizontal angles are bearings in degrees; planar points are (x, y) in
  metres with the bearing measured from +x towards +y.
"""

import math
from typing import Tuple

import numpy as np


def horizontal_distance(slope_distance_mm: float, vertical_angle_deg: float) -> float:
    """
    Project a slope distance onto the horizontal plane.

    Args:
        slope_distance_mm: Instrument-to-target distance (mm)
        vertical_angle_deg: Vertical angle from zenith (deg)

    Returns:
        Horizontal distance in millimetres
    """
    return slope_distance_mm * math.sin(math.radians(vertical_angle_deg))


def horizontal_distance_m(slope_distance_mm: float, vertical_angle_deg: float) -> float:
    return horizontal_distance(slope_distance_mm, vertical_angle_deg) / 1000.0


def polar_to_xy(distance_m: float, bearing_deg: float) -> np.ndarray:
    """Planar offset of a point `distance_m` away along `bearing_deg`."""
    bearing = np.radians(bearing_deg)
    return np.array([distance_m * np.cos(bearing), distance_m * np.sin(bearing)])


def station_from_centre_reading(centre_hd_m: float, bearing_deg: float) -> np.ndarray:
    """
    Instrument position when the circle centre is the origin.

    The centre lies `centre_hd_m` from the station along `bearing_deg`, so the
    station sits at the negated offset.
    """
    return -polar_to_xy(centre_hd_m, bearing_deg)


def point_from_station(station: np.ndarray, hd_m: float, bearing_deg: float) -> np.ndarray:
    """Planar position of a sighted point, given the station position."""
    return np.asarray(station, dtype=float) + polar_to_xy(hd_m, bearing_deg)


def distance_from_origin(point: np.ndarray) -> float:
    return float(np.linalg.norm(point))


def as_tuple(point: np.ndarray) -> Tuple[float, float]:
    return float(point[0]), float(point[1])
