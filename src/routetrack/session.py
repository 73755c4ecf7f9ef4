#!/usr/bin/env python3
"""
Navigation session: runs the simulation on an asyncio loop and reroutes
through the routing service whenever the engine reports a deviation.
"""

from functools import partial
from typing import List, Optional
import asyncio
import logging

from .config import RouteTrackConfig
from .exceptions import CooldownActiveError, NoDestinationError, RouteTrackError
from .geometry import Position
from .route import RouteTrack
from .routing import RouteResult, RoutingClient
from .simulation import (
    Arrived,
    DeviationStarted,
    EngineState,
    PositionUpdate,
    SimulationEngine,
    SimulationEvent,
)

logger = logging.getLogger(__name__)


class NavigationSession:
    """Couples a SimulationEngine with reroute requests to a RoutingClient.

    All engine and track mutations happen on the event loop thread. Only the
    blocking HTTP request runs in the loop's default executor.
    """

    def __init__(
        self,
        track: RouteTrack,
        engine: SimulationEngine,
        client: Optional[RoutingClient] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        config: Optional[RouteTrackConfig] = None,
    ):
        self.track = track
        self.engine = engine
        self.client = client
        self.loop = loop
        self.config = config or engine.config

        self.trace: List[Position] = []
        self.deviation_points: List[Position] = []
        self.reroutes_requested = 0
        self.reroutes_rejected = 0
        self.reroutes_completed = 0
        self.reroutes_failed = 0

        self.arrived = asyncio.Event()
        self.finished = asyncio.Event()
        self.max_ticks: Optional[int] = None
        self._reroute_future: Optional[asyncio.Future] = None

        engine.add_listener(self._on_event)

    @property
    def reroute_in_flight(self) -> bool:
        return self._reroute_future is not None and not self._reroute_future.done()

    def _on_event(self, event: SimulationEvent) -> None:
        if isinstance(event, PositionUpdate):
            self.trace.append(Position(event.latitude, event.longitude))
            if self.max_ticks is not None and len(self.trace) >= self.max_ticks:
                logger.info(f"Reached tick limit ({self.max_ticks}), stopping")
                self.engine.stop()
                self.finished.set()
        elif isinstance(event, DeviationStarted):
            self.deviation_points.append(Position(event.latitude, event.longitude))
            self.request_reroute()
        elif isinstance(event, Arrived):
            self.arrived.set()
            self.finished.set()

    def request_reroute(self) -> Optional[asyncio.Future]:
        """
        Ask the routing service for a new route from the current position.

        Returns:
            Future for the in-flight request, or None if the request was
            dropped (no client, request in flight, cooldown or no destination)
        """
        if self.client is None:
            logger.debug("No routing client configured, not rerouting")
            return None

        if self.reroute_in_flight:
            logger.debug("Reroute already in progress, dropping request")
            self.reroutes_rejected += 1
            return None

        position = self.engine.current_position
        if position is None:
            return None

        try:
            destination = self.track.begin_reroute()
        except CooldownActiveError as e:
            logger.warning(f"Reroute cooldown active ({e.remaining_ms:.0f} ms remaining)")
            self.reroutes_rejected += 1
            return None
        except NoDestinationError:
            logger.error("No destination set")
            self.reroutes_rejected += 1
            return None

        self.reroutes_requested += 1
        logger.warning("Rerouting...")

        loop = self.loop or asyncio.get_running_loop()
        future = loop.run_in_executor(
            None,
            self.client.find_route,
            position,
            destination,
            self.track.vehicle_profile,
        )
        future.add_done_callback(partial(self._on_reroute_done, position, destination))
        self._reroute_future = future
        return future

    def _on_reroute_done(
        self, start: Position, destination: Position, future: asyncio.Future
    ) -> None:
        if future is self._reroute_future:
            self._reroute_future = None
        if future.cancelled():
            return

        try:
            result: RouteResult = future.result()
            self.track.set_route_result(result, start, destination)
        except RouteTrackError as e:
            logger.error(f"Reroute failed: {e}")
            self.reroutes_failed += 1
            return

        self.engine.on_route_replaced()
        self.reroutes_completed += 1
        logger.info(f"Route updated: {len(result.coordinates)} points")

    async def run(
        self, start_position: Optional[Position] = None, max_ticks: Optional[int] = None
    ) -> bool:
        """
        Run the simulation until arrival or until max_ticks positions.

        Args:
            start_position: Where to start (defaults to the route start)
            max_ticks: Stop after this many position updates

        Returns:
            True if the destination was reached
        """
        start = start_position or self.track.start_point
        if start is None:
            raise NoDestinationError("No route set")

        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        if self.engine.scheduler is None:
            self.engine.scheduler = self.loop

        self.max_ticks = max_ticks
        self.finished.clear()
        self.arrived.clear()

        self.engine.start(start)
        try:
            await self.finished.wait()
        finally:
            self.engine.stop()

        if self._reroute_future is not None:
            # Let a pending reroute settle so its result is applied or logged
            await asyncio.wait([self._reroute_future])

        return self.engine.engine_state is EngineState.ARRIVED
