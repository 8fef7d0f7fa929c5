# qrattend/backend/tools/geofence.py

import math

EARTH_RADIUS_METERS = 6371e3


class InvalidCoordinatesError(ValueError):
    """Raised when a latitude/longitude pair is missing or out of range."""
    pass


def validate_coordinates(lat, lng) -> tuple:
    """
    Converts a latitude/longitude pair to floats and checks their ranges.

    Raises:
        InvalidCoordinatesError: If either value is not a finite number or is
            outside [-90, 90] / [-180, 180].
    """
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InvalidCoordinatesError("Invalid coordinates")

    if math.isnan(lat) or math.isnan(lng) or not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise InvalidCoordinatesError("Invalid coordinates")
    return lat, lng


def haversine_distance(lat1, lng1, lat2, lng2) -> float:
    """
    Great-circle distance in meters between two points.

    Args:
        lat1, lng1: The first point, in degrees.
        lat2, lng2: The second point, in degrees.

    Returns:
        float: The distance in meters.
    """
    lat1, lng1 = validate_coordinates(lat1, lng1)
    lat2, lng2 = validate_coordinates(lat2, lng2)

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def verify_geofence(scan_lat, scan_lng, classroom_lat, classroom_lng, radius_meters: float) -> tuple:
    """
    Checks whether a scan location lies inside the classroom geofence.

    Returns:
        tuple: (is_inside, distance_in_meters)
    """
    distance = haversine_distance(scan_lat, scan_lng, classroom_lat, classroom_lng)
    return distance <= radius_meters, distance
