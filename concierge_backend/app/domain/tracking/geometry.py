"""Geographic helpers for route seeding and position interpolation.

Haversine distance, initial bearing and distance-proportional interpolation
along an ordered polyline of (lat, lng) waypoints.
"""

import bisect
import math
from typing import List, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0

Point = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad, lon1_rad, lat2_rad, lon2_rad = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def calculate_heading(from_coords: Point, to_coords: Point) -> float:
    """Initial bearing in degrees (0-360) from one point towards another."""
    if from_coords == to_coords:
        return 0.0

    lat1, lon1 = math.radians(from_coords[0]), math.radians(from_coords[1])
    lat2, lon2 = math.radians(to_coords[0]), math.radians(to_coords[1])

    dlon = lon2 - lon1

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)

    bearing_rad = math.atan2(y, x)
    return (math.degrees(bearing_rad) + 360) % 360


def precompute_cumulative_distances(polyline: Sequence[Point]) -> List[float]:
    """Cumulative distance (km) at the end of each segment."""
    cumulative = []
    total = 0.0
    for start, end in zip(polyline, polyline[1:]):
        total += haversine_distance(start[0], start[1], end[0], end[1])
        cumulative.append(total)
    return cumulative


def interpolate_position(polyline: Sequence[Point], fraction: float) -> Point:
    """
    Position at `fraction` (0-1) of the polyline's total length.

    Degenerate polylines (a single point, or all points equal) return the
    first point.
    """
    if not polyline:
        raise ValueError("polyline must contain at least one point")
    if fraction <= 0.0 or len(polyline) == 1:
        return tuple(polyline[0])
    if fraction >= 1.0:
        return tuple(polyline[-1])

    cumulative = precompute_cumulative_distances(polyline)
    total = cumulative[-1]
    if total == 0.0:
        return tuple(polyline[0])

    target = total * fraction
    idx = bisect.bisect_left(cumulative, target)
    idx = min(idx, len(polyline) - 2)

    prev_cumulative = cumulative[idx - 1] if idx > 0 else 0.0
    segment_distance = cumulative[idx] - prev_cumulative
    if segment_distance == 0.0:
        return tuple(polyline[idx])

    segment_progress = (target - prev_cumulative) / segment_distance
    start, end = polyline[idx], polyline[idx + 1]
    return (
        start[0] + (end[0] - start[0]) * segment_progress,
        start[1] + (end[1] - start[1]) * segment_progress,
    )
