"""Exception types raised by routetrack."""

from typing import Optional


class RouteTrackError(Exception):
    """Base class for all routetrack errors."""

    pass


class InvalidRouteError(RouteTrackError):
    """Raised when route geometry is empty or malformed."""

    pass


class PolylineDecodeError(InvalidRouteError):
    """Raised when an encoded polyline string cannot be decoded."""

    pass


class CooldownActiveError(RouteTrackError):
    """Raised when a reroute is requested before the cooldown has elapsed."""

    def __init__(self, remaining_ms: float, message: Optional[str] = None):
        self.remaining_ms = remaining_ms
        super().__init__(
            message or f"Reroute cooldown active ({remaining_ms:.0f} ms remaining)"
        )


class NoDestinationError(RouteTrackError):
    """Raised when a reroute is requested with no destination set."""

    pass


class RouteNotFoundError(RouteTrackError):
    """Raised when the routing service returns no usable route."""

    pass


class TransportError(RouteTrackError):
    """Raised when the routing service cannot be reached."""

    pass
