import math

EARTH_RADIUS_KM = 6371.0

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in km between two (lat, lon) points given in decimal degrees.
    Callers must pass finite coordinates.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    # rounding noise can push a a hair over 1 for antipodal points
    a = min(1.0, a)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

def depot_distance_km(origin, destination) -> float:
    """Distance between two objects exposing .lat / .lon (e.g. Depot)."""
    return haversine_km(origin.lat, origin.lon, destination.lat, destination.lon)
