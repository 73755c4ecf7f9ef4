#!/usr/bin/env python3
"""
Tick-based simulation of an agent travelling along the active route.

The engine is single-threaded and cooperative. Each tick runs to completion
and then schedules the next one through a scheduler such as an asyncio event
loop. Listeners receive typed events synchronously from inside the tick.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, NamedTuple, Optional, Protocol, Sequence, Union
import logging
import random

from .config import RouteTrackConfig
from .geometry import Position
from .geometry_utils import (
    find_nearest_point_on_route,
    haversine_distance,
    point_at_distance,
    random_offset,
)
from .route import RouteTrack

logger = logging.getLogger(__name__)

MIN_SPEED_MULTIPLIER = 1
MAX_SPEED_MULTIPLIER = 10
DEFAULT_SPEED_MULTIPLIER = 5

# Deviation may only start between these fractions of the route
DEVIATION_MIN_PROGRESS = 0.3
DEVIATION_MAX_PROGRESS = 0.7
# Chance that an eligible tick opens a deviation window
DEVIATION_PROBABILITY = 0.2
# Number of route-index advances a deviation window stays open for
DEVIATION_WINDOW_ADVANCES = 5


class EngineState(Enum):
    """Lifecycle states of the simulation engine."""

    IDLE = "idle"
    RUNNING = "running"
    ARRIVED = "arrived"

    def __str__(self) -> str:
        return self.value


class PositionUpdate(NamedTuple):
    """Emitted on every tick that produces a new position."""

    latitude: float
    longitude: float
    deviated: bool


class DeviationStarted(NamedTuple):
    """Emitted once when the agent is first found off-route."""

    latitude: float
    longitude: float


class Arrived(NamedTuple):
    """Emitted once when the agent reaches the destination."""

    latitude: float
    longitude: float


SimulationEvent = Union[PositionUpdate, DeviationStarted, Arrived]
SimulationListener = Callable[[SimulationEvent], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything that can run a callback after a delay (e.g. an asyncio loop)."""

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> TimerHandle: ...


@dataclass
class SimulationState:
    """Mutable simulation state owned by SimulationEngine."""

    running: bool = False
    current_position: Optional[Position] = None
    route_index: int = 0
    speed_multiplier: int = DEFAULT_SPEED_MULTIPLIER
    deviation_enabled: bool = False
    deviation_active: bool = False
    deviation_start_index: int = -1


class SimulationEngine:
    """Advances a simulated position along a RouteTrack one tick at a time."""

    def __init__(
        self,
        track: RouteTrack,
        config: Optional[RouteTrackConfig] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initializes an idle SimulationEngine.

        Args:
            track: Route to follow; read on every tick, never owned.
            config: Simulation settings (defaults to RouteTrackConfig()).
            scheduler: Runs future ticks. Without one, ticks only happen when
                tick() is called directly.
            rng: Random source for deviation simulation.
        """
        self.track = track
        self.config = config or RouteTrackConfig()
        self.scheduler = scheduler
        self._rng = rng or random.Random()

        self._state = SimulationState()
        self._engine_state = EngineState.IDLE
        self._listeners: List[SimulationListener] = []
        self._handle: Optional[TimerHandle] = None
        # Bumped on start/stop/arrival so stale scheduled ticks are ignored
        self._generation = 0

    @property
    def engine_state(self) -> EngineState:
        return self._engine_state

    @property
    def state(self) -> SimulationState:
        """A copy of the current simulation state."""
        return replace(self._state)

    def snapshot(self) -> SimulationState:
        return self.state

    @property
    def current_position(self) -> Optional[Position]:
        return self._state.current_position

    @property
    def route_index(self) -> int:
        return self._state.route_index

    @property
    def deviation_window_open(self) -> bool:
        """True while the simulated deviation window is producing off-route positions."""
        start = self._state.deviation_start_index
        return start > 0 and self._state.route_index < start + DEVIATION_WINDOW_ADVANCES

    def add_listener(self, listener: SimulationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SimulationListener) -> None:
        self._listeners.remove(listener)

    def _emit(self, event: SimulationEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def start(self, start_position: Position) -> Optional[TimerHandle]:
        """
        Start the simulation at start_position.

        Args:
            start_position: Initial agent position

        Returns:
            Handle for the first scheduled tick, or None if already running
            or no scheduler is attached
        """
        if self._engine_state is EngineState.RUNNING:
            return None

        self._generation += 1
        self._engine_state = EngineState.RUNNING
        self._state.running = True
        self._state.current_position = Position(*start_position)
        self._state.route_index = 0
        self._state.deviation_active = False
        self._state.deviation_start_index = -1

        logger.info("Simulation started")
        self._schedule_tick(0.0)
        return self._handle

    def stop(self) -> None:
        """Stop the simulation and cancel any pending tick."""
        if self._engine_state is not EngineState.RUNNING:
            return

        self._engine_state = EngineState.IDLE
        self._halt()
        logger.info("Simulation stopped")

    def _halt(self) -> None:
        self._state.running = False
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def set_speed(self, multiplier: int) -> None:
        """Set the speed multiplier, clamped to [1, 10]."""
        self._state.speed_multiplier = max(
            MIN_SPEED_MULTIPLIER, min(MAX_SPEED_MULTIPLIER, int(multiplier))
        )

    def set_deviation_enabled(self, enabled: bool) -> None:
        """Enable or disable deviation simulation on future ticks."""
        self._state.deviation_enabled = enabled
        logger.info(f"Deviation simulation: {'On' if enabled else 'Off'}")

    def on_route_replaced(self) -> None:
        """
        Resynchronize after the track's route has been replaced.

        Moves the route index to the vertex nearest the current position and
        clears all deviation state.
        """
        state = self._state
        state.route_index = 0
        state.deviation_active = False
        state.deviation_start_index = -1

        geometry = self.track.geometry
        if state.current_position is not None and geometry:
            nearest = find_nearest_point_on_route(geometry, state.current_position)
            state.route_index = nearest.index
            logger.debug(
                f"Resynchronized to route index {nearest.index} "
                f"({nearest.distance:.1f} m away)"
            )

    def heading(self) -> float:
        """Display heading toward the next route vertex, in degrees."""
        if self._state.current_position is None:
            return 0.0
        return self.track.heading_at(
            self._state.current_position, self._state.route_index
        )

    def tick(self) -> None:
        """Run one simulation step."""
        if self._engine_state is not EngineState.RUNNING:
            return
        generation = self._generation

        # Hold one reference for the whole tick; a route swap shows up next tick
        geometry = self.track.geometry
        if not geometry:
            self._schedule_next_tick()
            return

        state = self._state
        if state.route_index > len(geometry) - 1:
            state.route_index = len(geometry) - 1

        move_distance = self.config.base_move_distance_m * state.speed_multiplier

        new_position = None
        if state.deviation_enabled and self._should_deviate(geometry):
            new_position = self._deviated_position(geometry, move_distance)
        if new_position is None:
            new_position = self._advance_along_route(geometry, move_distance)

        state.current_position = new_position

        deviation = self.track.check_deviation(
            new_position, self.config.reroute_threshold_m
        )
        logger.debug(
            f"Tick: ({new_position.latitude:.6f}, {new_position.longitude:.6f}) "
            f"index={state.route_index}/{len(geometry) - 1} "
            f"off-route={deviation.distance:.1f} m"
        )
        self._emit(
            PositionUpdate(
                new_position.latitude, new_position.longitude, deviation.deviated
            )
        )
        if self._generation != generation:
            # A listener stopped or restarted the engine
            return

        if self.track.has_arrived(new_position, self.config.arrival_threshold_m):
            self._engine_state = EngineState.ARRIVED
            self._halt()
            logger.info("Arrived at destination")
            self._emit(Arrived(new_position.latitude, new_position.longitude))
            return

        if deviation.deviated and not state.deviation_active:
            state.deviation_active = True
            logger.warning(f"Deviation detected: {round(deviation.distance)}m")
            self._emit(DeviationStarted(new_position.latitude, new_position.longitude))
            if self._generation != generation:
                return

        self._schedule_next_tick()

    def _should_deviate(self, geometry: Sequence[Position]) -> bool:
        state = self._state
        progress = state.route_index / len(geometry)

        if (
            DEVIATION_MIN_PROGRESS < progress < DEVIATION_MAX_PROGRESS
            and not state.deviation_active
            and state.deviation_start_index < 0
        ):
            if self._rng.random() < DEVIATION_PROBABILITY:
                state.deviation_start_index = state.route_index
                logger.warning("Starting route deviation simulation")

        return self.deviation_window_open

    def _deviated_position(
        self, geometry: Sequence[Position], move_distance: float
    ) -> Optional[Position]:
        state = self._state
        if state.route_index >= len(geometry) - 1:
            return None

        current_vertex = geometry[state.route_index]
        next_vertex = geometry[state.route_index + 1]
        deviated = random_offset(
            current_vertex, self.config.max_deviation_m, self._rng
        )

        # Keep moving forward so the window eventually closes
        if haversine_distance(current_vertex, next_vertex) < move_distance * 2:
            state.route_index += 1

        return deviated

    def _advance_along_route(
        self, geometry: Sequence[Position], move_distance: float
    ) -> Position:
        state = self._state
        if state.route_index >= len(geometry) - 1:
            return geometry[-1]

        current = state.current_position
        if current is None:
            current = geometry[state.route_index]
        next_vertex = geometry[state.route_index + 1]
        dist_to_next = haversine_distance(current, next_vertex)

        if dist_to_next < move_distance:
            state.route_index += 1
            return next_vertex

        return point_at_distance(current, next_vertex, move_distance)

    def _schedule_tick(self, delay: float) -> None:
        if self.scheduler is None:
            return
        self._handle = self.scheduler.call_later(
            delay, self._run_scheduled_tick, self._generation
        )

    def _schedule_next_tick(self) -> None:
        if self._engine_state is not EngineState.RUNNING:
            return
        interval_ms = self.config.update_interval_ms / self._state.speed_multiplier
        self._schedule_tick(interval_ms / 1000.0)

    def _run_scheduled_tick(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        self.tick()
