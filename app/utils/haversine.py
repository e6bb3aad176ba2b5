from math import radians, sin, cos, sqrt, atan2
from typing import Protocol

# Earth's mean radius in meters
R = 6371000.0


class HasLatLng(Protocol):
    lat: float
    lng: float


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points given in decimal degrees.

    Returns:
        Distance in meters (unrounded).
    """
    lat1, lng1, lat2, lng2 = map(radians, [lat1, lng1, lat2, lng2])

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    a = sin(dlat / 2)**2 + cos(lat1) * cos(lat2) * sin(dlng / 2)**2
    # atan2 form stays stable when a drifts a hair above 1.0
    c = 2 * atan2(sqrt(a), sqrt(max(0.0, 1 - a)))

    return R * c


def compute_distance_meters(a: HasLatLng, b: HasLatLng) -> int:
    """Distance between two lat/lng objects rounded to the nearest meter."""
    return int(round(haversine_meters(a.lat, a.lng, b.lat, b.lng)))
