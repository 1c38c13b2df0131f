"""Geospatial helpers."""
from __future__ import annotations

import math
from dataclasses import dataclass

# Earth mean radius used by PostGIS ST_DistanceSphere. Listing and
# nearest-facility distances both go through great_circle_m so they compare.
EARTH_RADIUS_M = 6_370_986.0


def great_circle_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


@dataclass(frozen=True)
class BBox:
    sw_lat: float
    sw_lng: float
    ne_lat: float
    ne_lng: float

    def contains(self, lat: float | None, lng: float | None) -> bool:
        if lat is None or lng is None:
            return False
        return self.sw_lat <= lat <= self.ne_lat and self.sw_lng <= lng <= self.ne_lng

    @classmethod
    def around(cls, lat: float, lng: float, radius_deg: float) -> "BBox":
        return cls(lat - radius_deg, lng - radius_deg, lat + radius_deg, lng + radius_deg)
