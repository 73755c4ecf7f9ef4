"""
Module for collecting and logging metrics about a simulation run.
"""

import logging
from typing import NamedTuple, Optional

from .config import RouteTrackConfig
from .geometry import Position
from .geometry_utils import haversine_distance
from .simulation import Arrived, DeviationStarted, PositionUpdate, SimulationEvent

logger = logging.getLogger(__name__)


class SimulationMetrics(NamedTuple):
    """Container for simulation metrics data."""

    position_updates: int
    deviated_updates: int
    deviation_events: int
    reroutes_requested: int
    reroutes_rejected: int
    reroutes_completed: int
    reroutes_failed: int
    arrived: bool
    distance_travelled: float  # meters
    route_progress: float = 0.0  # meters along the active route
    route_length: float = 0.0  # meters


class MetricsCollector:
    """Engine listener that counts events and accumulates travelled distance."""

    def __init__(self):
        self.position_updates = 0
        self.deviated_updates = 0
        self.deviation_events = 0
        self.arrived = False
        self.distance_travelled = 0.0
        self._last_position: Optional[Position] = None

    def __call__(self, event: SimulationEvent) -> None:
        if isinstance(event, PositionUpdate):
            position = Position(event.latitude, event.longitude)
            if self._last_position is not None:
                self.distance_travelled += haversine_distance(
                    self._last_position, position
                )
            self._last_position = position
            self.position_updates += 1
            if event.deviated:
                self.deviated_updates += 1
        elif isinstance(event, DeviationStarted):
            self.deviation_events += 1
        elif isinstance(event, Arrived):
            self.arrived = True

    def collect(self, session=None) -> SimulationMetrics:
        """
        Build a metrics snapshot.

        Args:
            session: NavigationSession whose reroute counters and final
                position to include

        Returns:
            SimulationMetrics containing all collected metrics
        """
        route_progress = 0.0
        route_length = 0.0
        if session is not None and session.track.is_active:
            route_length = session.track.length
            position = session.engine.current_position
            if position is not None:
                route_progress = min(
                    session.track.distance_along_route(position), route_length
                )

        return SimulationMetrics(
            position_updates=self.position_updates,
            deviated_updates=self.deviated_updates,
            deviation_events=self.deviation_events,
            reroutes_requested=session.reroutes_requested if session else 0,
            reroutes_rejected=session.reroutes_rejected if session else 0,
            reroutes_completed=session.reroutes_completed if session else 0,
            reroutes_failed=session.reroutes_failed if session else 0,
            arrived=self.arrived,
            distance_travelled=self.distance_travelled,
            route_progress=route_progress,
            route_length=route_length,
        )


def log_metrics(metrics: SimulationMetrics, config: RouteTrackConfig) -> None:
    """
    Log detailed metrics after the simulation has finished.

    Args:
        metrics: SimulationMetrics to log
        config: Settings; nothing is logged unless config.metrics is set
    """
    if not config.metrics:
        return

    logger.debug("=== ROUTETRACK_METRICS ===")
    logger.debug(f"position_updates={metrics.position_updates}")
    logger.debug(f"deviated_updates={metrics.deviated_updates}")
    logger.debug(f"deviation_events={metrics.deviation_events}")
    logger.debug(f"reroutes_requested={metrics.reroutes_requested}")
    logger.debug(f"reroutes_rejected={metrics.reroutes_rejected}")
    logger.debug(f"reroutes_completed={metrics.reroutes_completed}")
    logger.debug(f"reroutes_failed={metrics.reroutes_failed}")
    logger.debug(f"arrived={str(metrics.arrived).lower()}")
    logger.debug(f"distance_travelled_m={metrics.distance_travelled:.1f}")
    logger.debug(f"route_progress_m={metrics.route_progress:.1f}")
    logger.debug(f"route_length_m={metrics.route_length:.1f}")
    logger.debug("=== END_ROUTETRACK_METRICS ===")
