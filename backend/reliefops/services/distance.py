"""
Distance provider — great-circle distance between two geocoordinates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from math import atan2, cos, radians, sin, sqrt
from typing import Optional

from pydantic import BaseModel, Field

EARTH_RADIUS_KM = 6371.0


class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @classmethod
    def maybe(cls, latitude: Optional[float], longitude: Optional[float]) -> Optional["GeoPoint"]:
        """Build a point, or ``None`` when either coordinate is missing."""
        if latitude is None or longitude is None:
            return None
        return cls(latitude=latitude, longitude=longitude)


class DistanceProvider(ABC):

    @abstractmethod
    def distance_km(self, origin: GeoPoint, destination: GeoPoint) -> float:
        pass

    def between(self, origin: GeoPoint | None, destination: GeoPoint | None) -> float | None:
        if origin is None or destination is None:
            return None
        return self.distance_km(origin, destination)


class HaversineDistanceProvider(DistanceProvider):

    def distance_km(self, origin: GeoPoint, destination: GeoPoint) -> float:
        lat1, lon1 = radians(origin.latitude), radians(origin.longitude)
        lat2, lon2 = radians(destination.latitude), radians(destination.longitude)

        dlat = lat2 - lat1
        dlon = lon2 - lon1
        a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
        c = 2 * atan2(sqrt(a), sqrt(1 - a))
        return EARTH_RADIUS_KM * c


haversine = HaversineDistanceProvider()
