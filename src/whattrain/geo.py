"""Geodesic helpers."""

import math

EARTH_RADIUS_M = 6371000.0

# Rough NYC service region
SERVICE_REGION = {
    "min_lat": 40.4,
    "max_lat": 41.0,
    "min_lon": -74.5,
    "max_lon": -73.5,
}


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two WGS84 points.

    Returns:
        Distance in meters.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def in_service_region(lat: float, lon: float) -> bool:
    """True if the point falls inside the service region's bounding box."""
    return (
        SERVICE_REGION["min_lat"] <= lat <= SERVICE_REGION["max_lat"]
        and SERVICE_REGION["min_lon"] <= lon <= SERVICE_REGION["max_lon"]
    )
