#!/usr/bin/env python3
"""
Active route state and geometric queries against it.
"""

from typing import Callable, Iterable, List, NamedTuple, Optional, TextIO, Tuple, Union
import logging
import math
import time
import gpxpy
import gpxpy.gpx
import pyproj
from shapely.geometry import LineString, Point

from . import polyline
from .exceptions import CooldownActiveError, InvalidRouteError, NoDestinationError
from .geometry import (
    Position,
    VehicleProfile,
    create_transverse_mercator_projection,
    positions_to_linestring,
)
from .geometry_utils import (
    calculate_bearing,
    calculate_cumulative_distances,
    distance_to_route,
    haversine_distance,
)

logger = logging.getLogger(__name__)

DEFAULT_REROUTE_COOLDOWN_MS = 3000.0
DEFAULT_ARRIVAL_THRESHOLD_M = 20.0

GeometryInput = Union[str, Iterable[Union[Position, Tuple[float, float]]]]


class DeviationCheck(NamedTuple):
    """Result of comparing a position against the active route."""

    deviated: bool
    distance: float  # meters


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def normalize_geometry(geometry: GeometryInput) -> Tuple[Position, ...]:
    """
    Convert route geometry input into an immutable tuple of positions.

    Args:
        geometry: An encoded polyline string, or an iterable of Position
            objects or (latitude, longitude) pairs

    Returns:
        Tuple of Position objects

    Raises:
        InvalidRouteError: If a coordinate is malformed or the polyline
            cannot be decoded
    """
    if isinstance(geometry, str):
        return tuple(polyline.decode(geometry))

    positions = []
    for i, coord in enumerate(geometry):
        if isinstance(coord, Position):
            positions.append(coord)
            continue
        try:
            lat, lng = coord
            positions.append(Position(latitude=float(lat), longitude=float(lng)))
        except (TypeError, ValueError) as e:
            raise InvalidRouteError(f"Route coordinate {i} is malformed: {coord!r}") from e

    return tuple(positions)


class RouteTrack:
    """Holds the active route and answers geometric queries against it."""

    def __init__(
        self,
        reroute_cooldown_ms: float = DEFAULT_REROUTE_COOLDOWN_MS,
        default_vehicle_profile: VehicleProfile = VehicleProfile.MOTORCYCLE,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        """Initializes an empty RouteTrack.

        Args:
            reroute_cooldown_ms: Minimum time between accepted reroutes.
            default_vehicle_profile: Profile used until a route sets one.
            clock: Returns the current wall-clock time in milliseconds.
        """
        self.reroute_cooldown_ms = reroute_cooldown_ms
        self.default_vehicle_profile = default_vehicle_profile
        self._clock = clock

        self._geometry: Tuple[Position, ...] = ()
        self.start_point: Optional[Position] = None
        self.end_point: Optional[Position] = None
        self.vehicle_profile = default_vehicle_profile
        self.last_reroute_timestamp: Optional[float] = None
        self.route_distance: Optional[float] = None
        self.route_duration: Optional[float] = None
        self.instructions: List = []

        self._projected: Optional[Tuple[pyproj.Proj, LineString]] = None

    @property
    def geometry(self) -> Tuple[Position, ...]:
        """The active route geometry (empty when no route is set)."""
        return self._geometry

    @property
    def is_active(self) -> bool:
        return len(self._geometry) > 0

    def set_route(
        self,
        geometry: GeometryInput,
        start_point: Position,
        end_point: Position,
        vehicle_profile: Optional[Union[VehicleProfile, str]] = None,
    ) -> None:
        """
        Replace the active route.

        The previous geometry tuple is never modified, so anything still
        holding a reference to it keeps a consistent view.

        Args:
            geometry: New route geometry (see normalize_geometry)
            start_point: Route origin
            end_point: Route destination
            vehicle_profile: Vehicle profile; keeps the current one if None

        Raises:
            InvalidRouteError: If the geometry is empty or malformed
        """
        new_geometry = normalize_geometry(geometry)
        if not new_geometry:
            raise InvalidRouteError("Route geometry cannot be empty")

        if vehicle_profile is None:
            profile = self.vehicle_profile
        else:
            profile = VehicleProfile(vehicle_profile)

        self._projected = None
        self._geometry = new_geometry
        self.start_point = Position(*start_point)
        self.end_point = Position(*end_point)
        self.vehicle_profile = profile
        self.route_distance = None
        self.route_duration = None
        self.instructions = []

        logger.debug(
            f"Route set with {len(new_geometry)} points "
            f"({self.length:.0f} m, vehicle: {profile})"
        )

    def set_route_result(
        self,
        result,
        start_point: Position,
        end_point: Position,
        vehicle_profile: Optional[Union[VehicleProfile, str]] = None,
    ) -> None:
        """
        Replace the active route with a routing service result.

        Args:
            result: RouteResult from the routing client
            start_point: Route origin
            end_point: Route destination
            vehicle_profile: Vehicle profile; keeps the current one if None
        """
        self.set_route(result.coordinates, start_point, end_point, vehicle_profile)
        self.route_distance = result.distance
        self.route_duration = result.duration
        self.instructions = list(result.instructions)

    def reset(self) -> None:
        """Clear all route state."""
        self._geometry = ()
        self._projected = None
        self.start_point = None
        self.end_point = None
        self.vehicle_profile = self.default_vehicle_profile
        self.last_reroute_timestamp = None
        self.route_distance = None
        self.route_duration = None
        self.instructions = []

    def check_deviation(self, position: Position, threshold_m: float) -> DeviationCheck:
        """
        Check whether a position is off the route.

        Args:
            position: Position to check
            threshold_m: Distance beyond which the position counts as deviated

        Returns:
            DeviationCheck; never deviated when the route has fewer than 2 points
        """
        if len(self._geometry) < 2:
            return DeviationCheck(deviated=False, distance=0.0)

        distance = distance_to_route(self._geometry, position)
        return DeviationCheck(deviated=distance > threshold_m, distance=distance)

    def remaining_distance(self, position: Position) -> float:
        """Straight-line distance in meters to the destination, or 0 if unset."""
        if self.end_point is None:
            return 0.0
        return haversine_distance(position, self.end_point)

    def has_arrived(
        self, position: Position, threshold_m: float = DEFAULT_ARRIVAL_THRESHOLD_M
    ) -> bool:
        """True if the destination is strictly closer than threshold_m."""
        return self.remaining_distance(position) < threshold_m

    def begin_reroute(self, now_ms: Optional[float] = None) -> Position:
        """
        Claim a reroute slot and return the destination to route toward.

        Args:
            now_ms: Current time in milliseconds (defaults to the track's clock)

        Returns:
            The current destination

        Raises:
            CooldownActiveError: If the previous reroute was too recent
            NoDestinationError: If no destination is set
        """
        now = self._clock() if now_ms is None else now_ms

        if self.last_reroute_timestamp is not None:
            elapsed = now - self.last_reroute_timestamp
            if elapsed < self.reroute_cooldown_ms:
                raise CooldownActiveError(self.reroute_cooldown_ms - elapsed)

        if self.end_point is None:
            raise NoDestinationError("No destination set")

        self.last_reroute_timestamp = now
        return self.end_point

    def heading_at(self, position: Position, route_index: int) -> float:
        """
        Display heading from position toward the next route vertex.

        Args:
            position: Current position
            route_index: Index of the last vertex reached

        Returns:
            Bearing in degrees, or 0 if no route is set
        """
        if not self._geometry:
            return 0.0
        next_index = min(route_index + 1, len(self._geometry) - 1)
        return calculate_bearing(position, self._geometry[next_index])

    def remaining_geometry(self, position: Position, route_index: int) -> List[Position]:
        """
        The part of the route still ahead, starting at the current position.

        Args:
            position: Current position
            route_index: Index of the last vertex reached

        Returns:
            List starting with position followed by the vertices from
            route_index onward
        """
        return [position] + list(self._geometry[route_index:])

    @property
    def length(self) -> float:
        """Total route length in meters."""
        cumulative = calculate_cumulative_distances(self._geometry)
        return cumulative[-1] if cumulative else 0.0

    def get_bbox(self, buffer: float = 0.0) -> Tuple[float, float, float, float]:
        """
        Get bounding box for this route, optionally with a buffer.

        Args:
            buffer: Buffer distance in meters (default: 0.0)

        Returns:
            Tuple of (south, west, north, east) in decimal degrees

        Raises:
            ValueError: If no route is set
        """
        if not self._geometry:
            raise ValueError("Cannot calculate bounding box for empty route")

        latitudes = [pos.latitude for pos in self._geometry]
        longitudes = [pos.longitude for pos in self._geometry]
        min_lat, max_lat = min(latitudes), max(latitudes)
        min_lon, max_lon = min(longitudes), max(longitudes)

        avg_lat = (min_lat + max_lat) / 2
        lat_buffer = buffer / 111000.0
        lon_buffer = buffer / (111000.0 * abs(math.cos(math.radians(avg_lat))))

        return (
            max(-90.0, min_lat - lat_buffer),
            max(-180.0, min_lon - lon_buffer),
            min(90.0, max_lat + lat_buffer),
            min(180.0, max_lon + lon_buffer),
        )

    @property
    def linestring(self) -> LineString:
        """
        The route as a LineString in a route-centered projection (meters).

        Raises:
            ValueError: If the route has fewer than two points
        """
        return self._projected_route()[1]

    def _projected_route(self) -> Tuple[pyproj.Proj, LineString]:
        if self._projected is None:
            projection = create_transverse_mercator_projection(self.get_bbox())
            self._projected = (
                projection,
                positions_to_linestring(list(self._geometry), projection),
            )
        return self._projected

    def distance_along_route(self, position: Position) -> float:
        """
        Distance in meters from the route start to the point on the route
        nearest to position, measured in projected coordinates.
        """
        if len(self._geometry) < 2:
            return 0.0
        projection, line = self._projected_route()
        x, y = projection(position.longitude, position.latitude)
        return line.project(Point(x, y))

    def __len__(self) -> int:
        """Return number of points in the route."""
        return len(self._geometry)

    def __getitem__(self, index):
        """Allow indexing into route points."""
        return self._geometry[index]

    def __iter__(self):
        """Allow iteration over route points."""
        return iter(self._geometry)


def read_gpx_positions(file_input: TextIO) -> List[Position]:
    """
    Parse GPX data and concatenate all tracks, segments and routes into a
    single list of positions.

    Args:
        file_input: File-like object containing GPX data

    Returns:
        List of positions in file order

    Raises:
        gpxpy.gpx.GPXException: If GPX data is malformed
    """
    gpx_data = gpxpy.parse(file_input)

    positions = []
    for track in gpx_data.tracks:
        for segment in track.segments:
            for point in segment.points:
                positions.append(Position(point.latitude, point.longitude))

    for gpx_route in gpx_data.routes:
        for point in gpx_route.points:
            positions.append(Position(point.latitude, point.longitude))

    logger.debug(f"Parsed {len(positions)} points from GPX data")
    return positions


def load_gpx_file(filename: str) -> List[Position]:
    """
    Load and parse a GPX file into a list of positions.

    Raises:
        FileNotFoundError: If file doesn't exist.
        PermissionError: If file can't be read.
        gpxpy.gpx.GPXException: If GPX file is malformed.
    """
    logger.debug(f"Reading GPX file: {filename}")
    with open(filename, "r", encoding="utf-8") as f:
        return read_gpx_positions(f)
