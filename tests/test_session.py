import asyncio
import logging
import threading

import pytest

from routetrack.config import RouteTrackConfig
from routetrack.exceptions import NoDestinationError, RouteNotFoundError
from routetrack.geometry import Position
from routetrack.route import RouteTrack
from routetrack.routing import RouteResult
from routetrack.session import NavigationSession
from routetrack.simulation import DeviationStarted, EngineState, SimulationEngine

DESTINATION = Position(0.005, 0.0)
ROUTE = [Position(0.0, 0.0), DESTINATION]
# About 111 m east of the route start
OFF_ROUTE_START = Position(0.0, 0.001)


class FakeRoutingClient:
    """Returns a straight route from the requested start to the destination."""

    def __init__(self, error=None, release=None):
        self.calls = []
        self.error = error
        self.release = release

    def find_route(self, start, end, vehicle=None):
        self.calls.append((start, end, vehicle))
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return RouteResult(distance=None, duration=None, coordinates=(start, end), instructions=[])


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_session(client, clock=None, **config_kwargs):
    config_kwargs.setdefault("update_interval_ms", 10)
    config = RouteTrackConfig(**config_kwargs)
    track = RouteTrack(reroute_cooldown_ms=config.reroute_cooldown_ms, clock=clock or FakeClock())
    track.set_route(ROUTE, ROUTE[0], DESTINATION)
    engine = SimulationEngine(track, config=config)
    engine.set_speed(10)
    session = NavigationSession(track, engine, client=client, config=config)
    return session


def test_run_to_arrival_on_route():
    async def scenario():
        session = make_session(FakeRoutingClient())
        arrived = await session.run()
        return session, arrived

    session, arrived = asyncio.run(scenario())

    assert arrived is True
    assert session.arrived.is_set()
    assert session.engine.engine_state == EngineState.ARRIVED
    assert session.trace
    assert session.deviation_points == []
    assert session.client.calls == []


def test_deviation_triggers_single_reroute():
    client = FakeRoutingClient()

    async def scenario():
        session = make_session(client)
        arrived = await session.run(start_position=OFF_ROUTE_START)
        return session, arrived

    session, arrived = asyncio.run(scenario())

    assert arrived is True
    assert len(client.calls) == 1
    start, end, _ = client.calls[0]
    assert end == DESTINATION
    assert session.deviation_points == [start]
    assert session.reroutes_requested == 1
    assert session.reroutes_completed == 1
    # The active route now starts where the deviation was detected
    assert session.track.geometry == (start, DESTINATION)


def test_max_ticks_stops_simulation():
    async def scenario():
        session = make_session(None, base_move_distance_m=1)
        arrived = await session.run(max_ticks=3)
        return session, arrived

    session, arrived = asyncio.run(scenario())

    assert arrived is False
    assert len(session.trace) == 3
    assert session.engine.engine_state == EngineState.IDLE


def test_run_without_route():
    async def scenario():
        track = RouteTrack()
        session = NavigationSession(track, SimulationEngine(track), client=None)
        await session.run()

    with pytest.raises(NoDestinationError):
        asyncio.run(scenario())


def test_request_reroute_without_client():
    async def scenario():
        session = make_session(None)
        session.engine.start(OFF_ROUTE_START)
        return session.request_reroute()

    assert asyncio.run(scenario()) is None


def test_in_flight_request_drops_second_reroute():
    release = threading.Event()
    client = FakeRoutingClient(release=release)

    async def scenario():
        session = make_session(client)
        session.engine.start(OFF_ROUTE_START)
        first = session.request_reroute()
        second = session.request_reroute()
        release.set()
        await first
        await asyncio.sleep(0)
        return session, first, second

    session, first, second = asyncio.run(scenario())

    assert first is not None
    assert second is None
    assert session.reroutes_rejected == 1
    assert len(client.calls) == 1
    assert session.reroutes_completed == 1
    assert not session.reroute_in_flight


def test_cooldown_drops_reroute(caplog):
    client = FakeRoutingClient()
    clock = FakeClock()

    async def scenario():
        session = make_session(client, clock=clock, reroute_cooldown_ms=3000)
        session.engine.start(OFF_ROUTE_START)
        await session.request_reroute()
        await asyncio.sleep(0)

        clock.now += 1000
        with caplog.at_level(logging.WARNING, logger="routetrack.session"):
            rejected = session.request_reroute()

        clock.now += 2000
        accepted = session.request_reroute()
        await accepted
        return session, rejected

    session, rejected = asyncio.run(scenario())

    assert rejected is None
    assert "Reroute cooldown active" in caplog.text
    assert len(client.calls) == 2
    assert session.reroutes_rejected == 1


def test_failed_reroute_keeps_route(caplog):
    client = FakeRoutingClient(error=RouteNotFoundError("no route"))

    async def scenario():
        session = make_session(client)
        session.engine.start(OFF_ROUTE_START)
        with caplog.at_level(logging.ERROR, logger="routetrack.session"):
            future = session.request_reroute()
            # The routing error stays on the future; the session only logs it
            await asyncio.wait([future])
            await asyncio.sleep(0)
        return session

    session = asyncio.run(scenario())

    assert session.reroutes_failed == 1
    assert session.reroutes_completed == 0
    assert session.track.geometry == tuple(ROUTE)
    assert "Reroute failed" in caplog.text


def test_deviation_event_records_point():
    async def scenario():
        session = make_session(None)
        session._on_event(DeviationStarted(0.001, 0.002))
        return session

    session = asyncio.run(scenario())
    assert session.deviation_points == [Position(0.001, 0.002)]
