from math import radians, sin, cos, sqrt, asin

from app.models.location import LocationFix

# Earth's radius in kilometers
R = 6371.0

def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points
    on the Earth (specified in decimal degrees) using the Haversine formula.

    Returns:
        Distance between the two points in kilometers.
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlon = lon2 - lon1
    dlat = lat2 - lat1

    a = sin(dlat / 2)**2 + cos(lat1) * cos(lat2) * sin(dlon / 2)**2
    # Rounding can push a marginally above 1.0 for antipodal points
    c = 2 * asin(sqrt(min(1.0, a)))

    return R * c

def distance_between(origin: LocationFix, destination: LocationFix) -> float:
    """Haversine distance in kilometers between two fixes."""
    return haversine(origin.latitude, origin.longitude, destination.latitude, destination.longitude)
