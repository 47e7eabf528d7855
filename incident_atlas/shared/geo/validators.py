"""
Incident Atlas - Coordinate Validators

Coordinates arrive from upstream feeds as numbers, numeric strings, empty
strings or nothing at all. These helpers never raise: anything that is not a
finite number inside the WGS84 ranges is reported as invalid.
"""

from __future__ import annotations

import math
from typing import Any


def to_finite_float(value: Any) -> float | None:
    """Convert a value to a finite float, or None if that is not possible."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def is_valid_coordinate(lat: Any, lon: Any) -> bool:
    """
    Check that a latitude/longitude pair is finite and within valid ranges.

    Args:
        lat: Latitude, expected in [-90, 90]
        lon: Longitude, expected in [-180, 180]

    Returns:
        True if both values are usable coordinates
    """
    lat_f = to_finite_float(lat)
    lon_f = to_finite_float(lon)
    if lat_f is None or lon_f is None:
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0
