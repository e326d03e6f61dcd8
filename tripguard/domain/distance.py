"""
Distance calculation using the Haversine formula.

Assumption
----------
Handoff proximity and GPS plausibility only need straight-line distance
between two fixes a few metres to a few kilometres apart, so great-circle
distance is used instead of a routing engine.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    # Out-of-range input can push ``a`` past 1.0 through rounding
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **metres** between two points."""
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0
