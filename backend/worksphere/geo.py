from __future__ import annotations

import math
from collections.abc import Sequence

from .models import LatLng

EARTH_RADIUS_METERS = 6_371_000.0


def haversine_meters(origin: LatLng, target: LatLng) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(origin.lat)
    phi2 = math.radians(target.lat)
    d_phi = math.radians(target.lat - origin.lat)
    d_lambda = math.radians(target.lng - origin.lng)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def centroid(points: Sequence[LatLng]) -> LatLng | None:
    """Arithmetic mean of latitudes and longitudes; None for no points."""
    if not points:
        return None
    lat = sum(p.lat for p in points) / len(points)
    lng = sum(p.lng for p in points) / len(points)
    return LatLng(lat=lat, lng=lng)


__all__ = ["EARTH_RADIUS_METERS", "centroid", "haversine_meters"]
