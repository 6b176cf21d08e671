"""Great-circle distance and interpolation helpers."""

import math
from typing import Tuple

from route_forecast.errors import InvalidCoordinate

EARTH_RADIUS_KM = 6371.0


def validate_coordinate(lat: float, lon: float) -> None:
    """Raise InvalidCoordinate unless lat/lon are finite and within range."""
    try:
        valid = (
            math.isfinite(lat) and math.isfinite(lon)
            and -90 <= lat <= 90 and -180 <= lon <= 180
        )
    except TypeError:
        valid = False
    if not valid:
        raise InvalidCoordinate(lat, lon)


def to_radians(deg: float) -> float:
    return deg * (math.pi / 180)


def to_degrees(rad: float) -> float:
    return rad * (180 / math.pi)


def distance_km(a, b) -> float:
    """
    Calculate the great-circle distance between two coordinates.

    Args:
        a: First point, any object with ``lat`` and ``lon`` in degrees
        b: Second point

    Returns:
        Distance in kilometers (Haversine formula)

    Raises:
        InvalidCoordinate: If either point is out of range
    """
    validate_coordinate(a.lat, a.lon)
    validate_coordinate(b.lat, b.lon)

    lat1, lat2 = to_radians(a.lat), to_radians(b.lat)
    dlat = lat2 - lat1
    dlon = to_radians(b.lon - a.lon)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def interpolate_linear(a, b, ratio: float) -> Tuple[float, float]:
    """Planar interpolation of lat/lon between two points.

    Adequate at kilometer sampling intervals; drifts near the poles and
    does not handle antimeridian crossings.
    """
    lat = a.lat + ratio * (b.lat - a.lat)
    lon = a.lon + ratio * (b.lon - a.lon)
    return lat, lon


def interpolate_great_circle(a, b, ratio: float) -> Tuple[float, float]:
    """Intermediate point on the great circle from ``a`` to ``b``."""
    lat1, lon1 = to_radians(a.lat), to_radians(a.lon)
    lat2, lon2 = to_radians(b.lat), to_radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    delta = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    if delta == 0:
        return a.lat, a.lon

    f = math.sin((1 - ratio) * delta) / math.sin(delta)
    g = math.sin(ratio * delta) / math.sin(delta)

    x = f * math.cos(lat1) * math.cos(lon1) + g * math.cos(lat2) * math.cos(lon2)
    y = f * math.cos(lat1) * math.sin(lon1) + g * math.cos(lat2) * math.sin(lon2)
    z = f * math.sin(lat1) + g * math.sin(lat2)

    lat = math.atan2(z, math.sqrt(x * x + y * y))
    lon = math.atan2(y, x)
    return to_degrees(lat), to_degrees(lon)
