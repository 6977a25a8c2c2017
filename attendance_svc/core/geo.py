from __future__ import annotations
import math

EARTH_RADIUS_M = 6_371_000.0

def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters (haversine)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c

def within_radius(anchor, point, radius_m: float) -> bool:
    """True when ``point`` lies within ``radius_m`` of ``anchor`` (both have latitude/longitude)."""
    return distance_meters(anchor.latitude, anchor.longitude, point.latitude, point.longitude) <= radius_m
