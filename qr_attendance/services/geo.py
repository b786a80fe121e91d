"""Geofence helpers."""
import math
from typing import Tuple

EARTH_RADIUS_METERS = 6371000  # WGS-84 mean radius


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two GPS points in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def is_within_geofence(
    latitude: float,
    longitude: float,
    center_latitude: float,
    center_longitude: float,
    radius_meters: float,
    buffer_meters: float = 0
) -> Tuple[bool, float]:
    """Return (inside, distance). The boundary ``radius + buffer`` counts as inside."""
    distance = haversine_distance(latitude, longitude, center_latitude, center_longitude)
    return distance <= radius_meters + buffer_meters, distance


def valid_coordinates(latitude: float, longitude: float) -> bool:
    return -90 <= latitude <= 90 and -180 <= longitude <= 180
