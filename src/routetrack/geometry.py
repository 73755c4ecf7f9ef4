"""
Position type and projection helpers for route geometry.

This module provides the geographic position value type used throughout
routetrack, plus helpers for creating a route-centered Transverse Mercator
projection and converting coordinate lists to Shapely LineString objects.
"""

from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

import pyproj
from shapely.geometry import LineString


class Position(NamedTuple):
    """Represents a geographic position with latitude and longitude."""

    latitude: float
    longitude: float


class VehicleProfile(Enum):
    """Vehicle profiles understood by the routing service."""

    CAR = "car"
    BIKE = "bike"
    FOOT = "foot"
    MOTORCYCLE = "motorcycle"

    def __str__(self) -> str:
        return self.value


def create_transverse_mercator_projection(
    bbox: Tuple[float, float, float, float],
) -> pyproj.Proj:
    """
    Create a custom transverse mercator projection centered on the given bounding box.

    Args:
        bbox: Tuple of (south, west, north, east) in decimal degrees

    Returns:
        pyproj.Proj object for the custom projection
    """
    south, west, north, east = bbox

    center_lat = (south + north) / 2.0
    center_lon = (west + east) / 2.0

    proj_string = (
        f"+proj=tmerc +lat_0={center_lat} +lon_0={center_lon} "
        f"+k=1 +x_0=0 +y_0=0 +datum=WGS84 +units=m +no_defs"
    )
    return pyproj.Proj(proj_string)


def positions_to_linestring(
    positions: List[Position], projection: Optional[pyproj.Proj] = None
) -> LineString:
    """
    Convert a list of positions to a Shapely LineString.

    Args:
        positions: Route positions in travel order
        projection: Optional pyproj.Proj object for coordinate transformation.
                   If None, uses (longitude, latitude) coordinates directly.

    Returns:
        LineString in projected coordinates (meters) if a projection is given,
        otherwise in geographic coordinates

    Raises:
        ValueError: If fewer than two positions are given
    """
    if len(positions) < 2:
        raise ValueError("At least two positions are required to create a LineString.")

    lons = [pos.longitude for pos in positions]
    lats = [pos.latitude for pos in positions]

    if projection is not None:
        x_coords, y_coords = projection(lons, lats)
        return LineString(list(zip(x_coords, y_coords)))

    return LineString(list(zip(lons, lats)))
