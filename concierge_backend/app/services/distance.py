"""
Distance / duration estimation collaborator.

Seeds ActiveTrip routes and feeds point-to-point distance to the fare
engine. The default estimator works offline from great-circle distance; a
routing-provider client can replace it through set_distance_estimator().
"""

from dataclasses import dataclass, field
from typing import List, Tuple

from concierge_backend.app.core.config import settings
from concierge_backend.app.domain.tracking.geometry import haversine_distance

Point = Tuple[float, float]


@dataclass
class RouteEstimate:
    distance_km: float
    duration_minutes: float
    waypoints: List[List[float]] = field(default_factory=list)


class DistanceEstimator:
    """Great-circle distance scaled by a road factor, at a fixed average speed."""

    def __init__(self, road_factor: float = 1.3, average_speed_kmh: float = 40.0):
        self.road_factor = road_factor
        self.average_speed_kmh = average_speed_kmh

    async def estimate(self, origin: Point, destination: Point) -> RouteEstimate:
        straight = haversine_distance(origin[0], origin[1], destination[0], destination[1])
        distance_km = straight * self.road_factor
        duration_minutes = distance_km / self.average_speed_kmh * 60 if self.average_speed_kmh else 0.0
        return RouteEstimate(
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            waypoints=[list(origin), list(destination)],
        )


_estimator = DistanceEstimator(
    road_factor=settings.road_distance_factor,
    average_speed_kmh=settings.average_speed_kmh,
)


def get_distance_estimator() -> DistanceEstimator:
    return _estimator


def set_distance_estimator(estimator: DistanceEstimator) -> None:
    global _estimator
    _estimator = estimator
