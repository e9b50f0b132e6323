"""Pure great-circle math and region checks."""

from __future__ import annotations

import math

from ridealert.core.config import RegionConfig
from ridealert.core.types import GeoPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in kilometres (unrounded)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    # Clamp guards asin against float drift just above 1.0 for antipodes.
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance rounded to two decimals."""
    return round(haversine_km(a, b), 2)


def radius_to_radians(radius_km: float) -> float:
    """Convert a ground radius to the angular radius used by ``$centerSphere``."""
    return radius_km / EARTH_RADIUS_KM


def in_region(point: GeoPoint, region: RegionConfig) -> bool:
    """Whether *point* lies inside the operating region's bounding box."""
    return (
        region.min_longitude <= point.longitude <= region.max_longitude
        and region.min_latitude <= point.latitude <= region.max_latitude
    )
