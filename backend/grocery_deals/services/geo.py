"""Great-circle distance helpers."""

import math
from typing import Tuple

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE_LATITUDE = 69.0


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in miles between two points given in decimal degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(latitude: float, longitude: float, radius_miles: float) -> Tuple[float, float, float, float]:
    """Coarse (min_lat, max_lat, min_lon, max_lon) box enclosing a radius.

    Used only to narrow a SQL query before exact haversine filtering.
    """
    lat_delta = radius_miles / MILES_PER_DEGREE_LATITUDE
    cos_lat = math.cos(math.radians(latitude))
    lon_delta = 180.0 if cos_lat < 1e-6 else min(180.0, lat_delta / cos_lat)
    return latitude - lat_delta, latitude + lat_delta, longitude - lon_delta, longitude + lon_delta
