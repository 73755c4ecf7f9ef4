from typing import Dict, Any, List, NamedTuple, Optional, Tuple, Union
import requests
import logging
import time

from . import polyline
from .config import RouteTrackConfig
from .exceptions import RouteNotFoundError, TransportError
from .geometry import Position, VehicleProfile

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_RETRY_DELAY = 2.0


class RouteResult(NamedTuple):
    """A route returned by the routing service."""

    distance: Optional[float]  # meters
    duration: Optional[float]  # milliseconds
    coordinates: Tuple[Position, ...]
    instructions: List[Dict[str, Any]]


def _normalize_points(points: Any) -> Tuple[Position, ...]:
    """Convert any of the service's point formats into positions.

    Raises:
        RouteNotFoundError: If a coordinate pair is malformed
    """
    try:
        return _convert_points(points)
    except (IndexError, KeyError, TypeError, ValueError) as e:
        raise RouteNotFoundError(f"Malformed route geometry: {e}") from e


def _convert_points(points: Any) -> Tuple[Position, ...]:
    if isinstance(points, dict) and "coordinates" in points:
        # GeoJSON: [[lng, lat], ...]
        return tuple(Position(float(c[1]), float(c[0])) for c in points["coordinates"])
    if isinstance(points, list):
        # Plain array: [[lat, lng], ...]
        return tuple(Position(float(p[0]), float(p[1])) for p in points)
    if isinstance(points, str):
        return tuple(polyline.decode(points))
    return ()


def parse_route_response(data: Dict[str, Any]) -> RouteResult:
    """Parse a routing service JSON response.

    Args:
        data: Decoded JSON body

    Returns:
        RouteResult for the first path in the response

    Raises:
        RouteNotFoundError: If the response is not OK or has no paths
        PolylineDecodeError: If the path holds a malformed encoded polyline
    """
    paths = data.get("paths") if isinstance(data, dict) else None
    if not isinstance(data, dict) or data.get("code") != "OK" or not paths:
        code = data.get("code") if isinstance(data, dict) else None
        raise RouteNotFoundError(f"Route not found (code: {code})")

    path = paths[0]
    coordinates = _normalize_points(path.get("points"))

    return RouteResult(
        distance=path.get("distance"),
        duration=path.get("time"),
        coordinates=coordinates,
        instructions=list(path.get("instructions") or []),
    )


def build_route_params(
    start: Position,
    end: Position,
    vehicle: Union[VehicleProfile, str],
    api_key: str,
    config: RouteTrackConfig,
) -> List[Tuple[str, str]]:
    """Build query parameters for a route request.

    The service takes the two endpoints as repeated ``point`` parameters, so
    this returns a list of pairs rather than a dict.
    """
    return [
        ("api-version", config.routing_api_version),
        ("apikey", api_key),
        ("vehicle", str(vehicle)),
        ("point", f"{start.latitude},{start.longitude}"),
        ("point", f"{end.latitude},{end.longitude}"),
    ]


def _is_retryable_error(e: requests.exceptions.HTTPError) -> bool:
    """Check if an HTTP error is retryable."""
    if e.response is not None and hasattr(e.response, "status_code"):
        return e.response.status_code == 429 or e.response.status_code >= 500
    else:
        error_msg = str(e).lower()
        return any(code in error_msg for code in ["429", "500", "502", "503", "504"])


class RoutingClient:
    """HTTP client for the routing service."""

    def __init__(self, api_key: str, config: Optional[RouteTrackConfig] = None):
        self.api_key = api_key
        self.config = config or RouteTrackConfig()

    def find_route(
        self,
        start: Position,
        end: Position,
        vehicle: Union[VehicleProfile, str, None] = None,
    ) -> RouteResult:
        """Request a route between two positions.

        Retries up to 3 times with exponential backoff on 429 (rate limit)
        and 5xx errors.

        Args:
            start: Route origin
            end: Route destination
            vehicle: Vehicle profile (defaults to the configured profile)

        Returns:
            RouteResult for the best route

        Raises:
            RouteNotFoundError: If the service finds no route
            TransportError: On network or HTTP errors after retries
        """
        vehicle = VehicleProfile(vehicle or self.config.default_vehicle_profile)
        params = build_route_params(start, end, vehicle, self.api_key, self.config)
        url = self.config.routing_api_url

        logger.debug(f"Finding route from {start} to {end} ({vehicle})")

        attempt = 0
        while True:
            try:
                response = requests.get(
                    url, params=params, timeout=self.config.routing_timeout
                )
                response.raise_for_status()
                data = response.json()
                break

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else None
                logger.debug(
                    f"HTTPError caught: status={status_code}, attempt={attempt}, max_retries={MAX_RETRIES}"
                )

                if _is_retryable_error(e) and attempt < MAX_RETRIES:
                    delay = BASE_RETRY_DELAY * (2**attempt)
                    error_type = (
                        "Server error"
                        if status_code and status_code >= 500
                        else "Rate limited"
                    )
                    logger.warning(
                        f"{error_type} ({status_code or 'unknown'}), retrying in {delay:.0f}s (attempt {attempt + 1} of {MAX_RETRIES + 1})"
                    )
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(f"Routing request failed: {e}") from e

            except (requests.exceptions.RequestException, ValueError) as e:
                # ValueError covers a body that is not valid JSON
                raise TransportError(f"Routing request failed: {e}") from e

        result = parse_route_response(data)
        if not result.coordinates:
            raise RouteNotFoundError("Route response contains no coordinates")

        distance = f"{result.distance:.0f} m" if result.distance is not None else "unknown"
        logger.info(f"Route found: {distance}, {len(result.coordinates)} points")
        return result
