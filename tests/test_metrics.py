import logging
from types import SimpleNamespace

import pytest

from routetrack.config import RouteTrackConfig
from routetrack.geometry import Position
from routetrack.metrics import MetricsCollector, SimulationMetrics, log_metrics
from routetrack.route import RouteTrack
from routetrack.simulation import Arrived, DeviationStarted, PositionUpdate


def test_collector_counts_events():
    collector = MetricsCollector()
    collector(PositionUpdate(0.0, 0.0, False))
    collector(PositionUpdate(0.0, 0.001, True))
    collector(DeviationStarted(0.0, 0.001))
    collector(PositionUpdate(0.0, 0.002, True))
    collector(Arrived(0.0, 0.002))

    metrics = collector.collect()

    assert metrics.position_updates == 3
    assert metrics.deviated_updates == 2
    assert metrics.deviation_events == 1
    assert metrics.arrived is True
    assert metrics.reroutes_requested == 0
    # Two steps of 0.001 degrees of longitude on the equator
    assert metrics.distance_travelled == pytest.approx(222.39, abs=0.01)


def test_collect_includes_session_counters():
    session = SimpleNamespace(
        reroutes_requested=3,
        reroutes_rejected=2,
        reroutes_completed=1,
        reroutes_failed=1,
        track=RouteTrack(),
        engine=SimpleNamespace(current_position=None),
    )
    metrics = MetricsCollector().collect(session)
    assert metrics.reroutes_requested == 3
    assert metrics.reroutes_rejected == 2
    assert metrics.reroutes_completed == 1
    assert metrics.reroutes_failed == 1
    assert metrics.arrived is False
    assert metrics.route_progress == 0.0
    assert metrics.route_length == 0.0


def test_collect_measures_progress_along_route():
    track = RouteTrack()
    route = [Position(0.0, 0.0), Position(0.01, 0.0)]
    track.set_route(route, route[0], route[-1])
    # Halfway along, a little east of the route
    engine = SimpleNamespace(current_position=Position(0.005, 0.0005))
    session = SimpleNamespace(
        reroutes_requested=0,
        reroutes_rejected=0,
        reroutes_completed=0,
        reroutes_failed=0,
        track=track,
        engine=engine,
    )

    metrics = MetricsCollector().collect(session)

    assert metrics.route_length == pytest.approx(1111.95, abs=0.1)
    assert metrics.route_progress == pytest.approx(metrics.route_length / 2, rel=1e-2)

    engine.current_position = Position(0.02, 0.0)
    beyond_end = MetricsCollector().collect(session).route_progress
    assert beyond_end <= metrics.route_length
    assert beyond_end == pytest.approx(metrics.route_length, rel=1e-2)


def _metrics():
    return SimulationMetrics(
        position_updates=10,
        deviated_updates=4,
        deviation_events=1,
        reroutes_requested=1,
        reroutes_rejected=0,
        reroutes_completed=1,
        reroutes_failed=0,
        arrived=True,
        distance_travelled=123.456,
        route_progress=600.0,
        route_length=1200.0,
    )


def test_log_metrics_writes_block(caplog):
    with caplog.at_level(logging.DEBUG, logger="routetrack.metrics"):
        log_metrics(_metrics(), RouteTrackConfig(metrics=True))

    messages = [r.getMessage() for r in caplog.records]
    assert messages[0] == "=== ROUTETRACK_METRICS ==="
    assert messages[-1] == "=== END_ROUTETRACK_METRICS ==="
    assert "position_updates=10" in messages
    assert "arrived=true" in messages
    assert "distance_travelled_m=123.5" in messages
    assert "route_progress_m=600.0" in messages
    assert "route_length_m=1200.0" in messages


def test_log_metrics_disabled(caplog):
    with caplog.at_level(logging.DEBUG, logger="routetrack.metrics"):
        log_metrics(_metrics(), RouteTrackConfig(metrics=False))
    assert caplog.records == []
