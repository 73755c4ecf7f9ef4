#!/usr/bin/env python3
"""
RouteTrack - Route tracking and off-route simulation.

This package tracks an agent's position against an active navigation route,
simulates travel along it (including random deviations), detects when the
agent goes off-route and drives reroutes through a routing service.
"""
import importlib.metadata

__version__ = importlib.metadata.version("routetrack")

# Import main classes for public API
from .config import RouteTrackConfig
from .exceptions import (
    CooldownActiveError,
    InvalidRouteError,
    NoDestinationError,
    PolylineDecodeError,
    RouteNotFoundError,
    RouteTrackError,
    TransportError,
)
from .geometry import Position, VehicleProfile
from .route import DeviationCheck, RouteTrack
from .routing import RouteResult, RoutingClient
from .simulation import (
    Arrived,
    DeviationStarted,
    EngineState,
    PositionUpdate,
    SimulationEngine,
    SimulationState,
)

__all__ = [
    "RouteTrackConfig",
    "RouteTrackError",
    "InvalidRouteError",
    "PolylineDecodeError",
    "CooldownActiveError",
    "NoDestinationError",
    "RouteNotFoundError",
    "TransportError",
    "Position",
    "VehicleProfile",
    "DeviationCheck",
    "RouteTrack",
    "RouteResult",
    "RoutingClient",
    "Arrived",
    "DeviationStarted",
    "EngineState",
    "PositionUpdate",
    "SimulationEngine",
    "SimulationState",
]
