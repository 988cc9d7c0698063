from __future__ import annotations

import math
from math import asin, cos, radians, sin, sqrt

"""
Geospatial helpers.

A tiny geometry layer so directory and presentation code can compute distances
without pulling in GIS dependencies. Everything here is pure and never raises on
missing input.
"""

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Compute great-circle (haversine) distance in kilometers between two points."""
    phi1 = radians(lat1)
    phi2 = radians(lat2)
    d_phi = radians(lat2 - lat1)
    d_lambda = radians(lng2 - lng1)

    h = sin(d_phi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(d_lambda / 2) ** 2
    # Float noise can push h slightly above 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * asin(sqrt(h))


def format_distance(km: float | None) -> str:
    """Render a distance for display.

    Below one kilometer the value is shown in whole meters (`"476 m"`), otherwise
    with one decimal and a `km` suffix (`"1.2 km"`). A value that rounds up to
    1000 m is shown as `"1.0 km"`.
    """
    if km is None or math.isnan(km) or km <= 0:
        return "0 m"
    if math.isinf(km):
        return "∞ km"
    meters = round(km * 1000)
    if meters < 1000:
        return f"{meters} m"
    return f"{km:.1f} km"
