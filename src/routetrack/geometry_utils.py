#!/usr/bin/env python3
"""
Geodesic distance, bearing and projection utilities for route tracking.

All functions take and return positions in decimal degrees and distances
in meters. None of them keep state.
"""

from typing import List, NamedTuple, Optional, Sequence
import logging
import math
import random

from .geometry import Position

logger = logging.getLogger(__name__)

# Mean Earth radius in meters
EARTH_RADIUS_M = 6371000.0

# Approximate length of one degree of latitude in meters
METERS_PER_DEGREE = 111000.0


class NearestPoint(NamedTuple):
    """Closest route vertex to a query position."""

    index: int
    distance: float  # meters
    point: Optional[Position]


def haversine_distance(pos1: Position, pos2: Position) -> float:
    """
    Calculate the haversine distance between two positions.

    Args:
        pos1: First position
        pos2: Second position

    Returns:
        Distance in meters
    """
    lat1, lon1 = math.radians(pos1.latitude), math.radians(pos1.longitude)
    lat2, lon2 = math.radians(pos2.latitude), math.radians(pos2.longitude)

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    # Rounding can push a just past 1 for antipodal points
    a = min(1.0, a)

    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def calculate_bearing(start: Position, end: Position) -> float:
    """
    Calculate the initial bearing from start to end.

    Args:
        start: Starting position
        end: Ending position

    Returns:
        Bearing in degrees (0-360, 0 = north, 90 = east). Identical
        positions give 0.
    """
    lat1 = math.radians(start.latitude)
    lat2 = math.radians(end.latitude)
    dlon = math.radians(end.longitude - start.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(
        dlon
    )

    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def point_at_distance(start: Position, end: Position, distance: float) -> Position:
    """
    Find the point a given distance from start toward end.

    Interpolates linearly along the latitude/longitude chord. The ratio is
    clamped so the result never passes end.

    Args:
        start: Segment start
        end: Segment end
        distance: Distance from start in meters

    Returns:
        Interpolated position
    """
    total_distance = haversine_distance(start, end)
    if total_distance == 0:
        return start

    ratio = distance / total_distance
    if ratio >= 1:
        return end
    if ratio <= 0:
        return start

    return Position(
        latitude=start.latitude + (end.latitude - start.latitude) * ratio,
        longitude=start.longitude + (end.longitude - start.longitude) * ratio,
    )


def point_to_segment_distance(
    point: Position, seg_start: Position, seg_end: Position
) -> float:
    """
    Calculate the distance from a point to a line segment.

    The foot of the perpendicular is found in planar longitude/latitude
    space and clamped to the segment; the distance to that foot is then
    measured with the haversine formula. This is accurate enough for the
    short segments of street-level routes.

    Args:
        point: Point to measure distance from
        seg_start: Start of line segment
        seg_end: End of line segment

    Returns:
        Distance in meters
    """
    a = point.longitude - seg_start.longitude
    b = point.latitude - seg_start.latitude
    c = seg_end.longitude - seg_start.longitude
    d = seg_end.latitude - seg_start.latitude

    dot = a * c + b * d
    len_sq = c * c + d * d
    param = dot / len_sq if len_sq != 0 else -1

    if param < 0:
        foot = seg_start
    elif param > 1:
        foot = seg_end
    else:
        foot = Position(
            latitude=seg_start.latitude + param * d,
            longitude=seg_start.longitude + param * c,
        )

    return haversine_distance(point, foot)


def find_nearest_point_on_route(
    route: Sequence[Position], point: Position
) -> NearestPoint:
    """
    Find the route vertex closest to a point.

    This is a vertex search, not a segment search; ties go to the lowest
    index.

    Args:
        route: Route positions
        point: Query position

    Returns:
        NearestPoint with the vertex index, its distance in meters and the
        vertex itself (index 0, infinite distance and no point for an empty
        route)
    """
    nearest = NearestPoint(index=0, distance=float("inf"), point=None)

    for i, vertex in enumerate(route):
        dist = haversine_distance(point, vertex)
        if dist < nearest.distance:
            nearest = NearestPoint(index=i, distance=dist, point=vertex)

    return nearest


def distance_to_route(route: Sequence[Position], point: Position) -> float:
    """
    Calculate the shortest distance from a point to any segment of a route.

    Args:
        route: Route positions
        point: Query position

    Returns:
        Distance in meters, or infinity if the route has fewer than 2 points
    """
    min_dist = float("inf")

    for i in range(len(route) - 1):
        dist = point_to_segment_distance(point, route[i], route[i + 1])
        if dist < min_dist:
            min_dist = dist

    return min_dist


def calculate_cumulative_distances(route: Sequence[Position]) -> List[float]:
    """
    Calculate cumulative distances along a route.

    Args:
        route: Route positions

    Returns:
        List of cumulative distances in meters, with same length as route
    """
    if not route:
        return []

    cumulative_distances = [0.0]
    for i in range(1, len(route)):
        segment_distance = haversine_distance(route[i - 1], route[i])
        cumulative_distances.append(cumulative_distances[-1] + segment_distance)

    return cumulative_distances


def random_offset(
    point: Position, max_meters: float, rng: Optional[random.Random] = None
) -> Position:
    """
    Displace a point by a random amount for deviation simulation.

    Each axis is offset independently by a uniform amount in
    [-max_meters, max_meters], converted with the local meters-per-degree
    approximation.

    Args:
        point: Position to displace
        max_meters: Maximum offset per axis in meters
        rng: Random number generator (defaults to the module-level functions)

    Returns:
        Displaced position
    """
    if rng is None:
        rng = random  # type: ignore[assignment]

    lat_offset = rng.uniform(-max_meters, max_meters) / METERS_PER_DEGREE
    lon_offset = rng.uniform(-max_meters, max_meters) / (
        METERS_PER_DEGREE * math.cos(math.radians(point.latitude))
    )

    return Position(
        latitude=point.latitude + lat_offset,
        longitude=point.longitude + lon_offset,
    )
