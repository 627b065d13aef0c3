"""
Travel estimators implementing the `TravelFunction` protocol.

Real deployments inject a geocoding / distance-matrix client. These two
estimators cover tests, demos and the no-API fallback.
"""

import logging
import math
from typing import Dict, Optional, Tuple

from .repository import TravelEstimate, TravelFunction

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Average speeds (km/h) per transport mode
SPEEDS_KMH = {
    "driving": 50.0,
    "walking": 5.0,
    "cycling": 15.0,
    "transit": 30.0,
}


class FlatRateTravelEstimator:
    """
    Same address -> no travel. Any other pair -> a fixed estimate.
    """

    def __init__(self, minutes: float = 15.0, distance_km: float = 10.0):
        self.minutes = minutes
        self.distance_km = distance_km

    def __call__(self, origin: str, destination: str) -> TravelEstimate:
        if _same_place(origin, destination):
            return TravelEstimate(distance_km=0.0, travel_time_minutes=0.0)
        return TravelEstimate(distance_km=self.distance_km, travel_time_minutes=self.minutes)


class HaversineTravelEstimator:
    """
    Great-circle distance between known coordinates, converted to a
    duration at an average speed for the transport mode.
    Unknown addresses are delegated to `fallback`.
    """

    def __init__(
        self,
        coordinates: Dict[str, Tuple[float, float]],
        mode: str = "driving",
        fallback: Optional[TravelFunction] = None
    ):
        if mode not in SPEEDS_KMH:
            raise ValueError(f"Unknown transport mode '{mode}'")
        self.coordinates = {_normalize(k): v for k, v in coordinates.items()}
        self.speed_kmh = SPEEDS_KMH[mode]
        self.fallback = fallback or FlatRateTravelEstimator()

    def __call__(self, origin: str, destination: str) -> TravelEstimate:
        if _same_place(origin, destination):
            return TravelEstimate(distance_km=0.0, travel_time_minutes=0.0)

        a = self.coordinates.get(_normalize(origin))
        b = self.coordinates.get(_normalize(destination))
        if a is None or b is None:
            logger.debug(f"No coordinates for '{origin}' -> '{destination}', using fallback")
            return self.fallback(origin, destination)

        distance = haversine_km(a[0], a[1], b[0], b[1])
        minutes = round(distance / self.speed_kmh * 60)
        return TravelEstimate(distance_km=round(distance, 2), travel_time_minutes=float(minutes))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    d_lat = lat2_r - lat1_r
    d_lon = math.radians(lon2 - lon1)

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _normalize(address: str) -> str:
    return " ".join((address or "").lower().split())


def _same_place(origin: str, destination: str) -> bool:
    return _normalize(origin) == _normalize(destination)
