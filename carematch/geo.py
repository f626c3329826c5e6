import math
from collections.abc import Iterable

from carematch.errors import ValidationError
from carematch.models import CaregiverProfile, GeoPoint

EARTH_RADIUS_KM = 6378.1
DEFAULT_RADIUS_KM = 25.0


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points, in kilometres."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def filter_within_radius(
    candidates: Iterable[CaregiverProfile],
    origin: GeoPoint,
    radius_km: float = DEFAULT_RADIUS_KM,
) -> list[tuple[CaregiverProfile, float]]:
    """
    Verified candidates whose distance to `origin` is at most `radius_km`,
    paired with that distance. Input order is preserved.
    """
    if not radius_km > 0:
        raise ValidationError("radius must be positive", radius_km=radius_km)

    within = []
    for candidate in candidates:
        if not candidate.verified:
            continue
        distance = haversine_km(origin, candidate.location)
        if distance <= radius_km:
            within.append((candidate, distance))
    return within
