#!/usr/bin/env python3
"""
Route tracking simulator.
This script loads a route (from a GPX file, an encoded polyline or the
routing service), drives a simulated agent along it, detects when the agent
goes off-route and reroutes, then writes an interactive HTML map of the run.

Requirements:
    pip install gpxpy folium requests shapely pyproj

"""

from typing import Optional, Tuple
import webbrowser
import argparse
import asyncio
import logging
import random
import sys
import os
from gpxpy import gpx

from . import __version__
from . import polyline
from . import visualization
from .config import RouteTrackConfig
from .exceptions import RouteTrackError
from .file_utils import generate_output_filename
from .geometry import Position, VehicleProfile
from .metrics import MetricsCollector, SimulationMetrics, log_metrics
from .route import RouteTrack, load_gpx_file
from .routing import RoutingClient
from .session import NavigationSession
from .simulation import SimulationEngine

# Configure logging
logger = logging.getLogger("routetrack")


def parse_coordinates(value: str) -> Position:
    """
    Parse a "lat, lng" string.

    Raises:
        ValueError: If the string is not two comma-separated numbers or is
            out of range
    """
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 2:
        raise ValueError(f"Expected 'lat, lng', got {value!r}")
    lat, lng = float(parts[0]), float(parts[1])
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError(f"Coordinates out of range: {value!r}")
    return Position(lat, lng)


def format_distance(meters: float) -> str:
    """Format a distance for display, e.g. "850 m" or "1.25 km"."""
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.2f} km"


def format_duration(ms: float) -> str:
    """Format a duration in milliseconds for display, e.g. "1h 5m"."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    defaults = RouteTrackConfig()
    parser = argparse.ArgumentParser(
        description="Route tracking and off-route simulation tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--gpx",
        type=str,
        metavar="FILE",
        help="Follow the track or route in a GPX file",
    )
    source.add_argument(
        "--polyline",
        type=str,
        metavar="STRING",
        help="Follow an encoded polyline (precision 5)",
    )
    source.add_argument(
        "--start",
        type=parse_coordinates,
        metavar="'LAT, LNG'",
        help="Fetch a route from the routing service starting here (requires --end and --api-key)",
    )
    parser.add_argument(
        "--end",
        type=parse_coordinates,
        metavar="'LAT, LNG'",
        help="Destination for a route fetched from the routing service",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Routing service API key; also enables rerouting on deviation",
    )
    parser.add_argument(
        "--vehicle",
        type=str,
        default=defaults.default_vehicle_profile,
        choices=[str(v) for v in VehicleProfile],
        help=f"Vehicle profile for routing (default: {defaults.default_vehicle_profile})",
    )
    parser.add_argument(
        "--speed",
        type=int,
        default=5,
        help="Speed multiplier from 1 to 10 (default: 5)",
    )
    parser.add_argument(
        "--simulate-deviation",
        action="store_true",
        help="Randomly wander off the route partway through",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible deviation simulation",
    )
    parser.add_argument(
        "--interval-ms",
        type=float,
        default=defaults.update_interval_ms,
        help=f"Position update interval in milliseconds at 1x speed (default: {defaults.update_interval_ms:g})",
    )
    parser.add_argument(
        "--move-distance",
        type=float,
        default=defaults.base_move_distance_m,
        help=f"Distance moved per update in meters at 1x speed (default: {defaults.base_move_distance_m:g})",
    )
    parser.add_argument(
        "--max-deviation",
        type=float,
        default=defaults.max_deviation_m,
        help=f"Maximum simulated deviation in meters (default: {defaults.max_deviation_m:g})",
    )
    parser.add_argument(
        "--reroute-threshold",
        type=float,
        default=defaults.reroute_threshold_m,
        help=f"Off-route distance in meters that counts as a deviation (default: {defaults.reroute_threshold_m:g})",
    )
    parser.add_argument(
        "--reroute-cooldown-ms",
        type=float,
        default=defaults.reroute_cooldown_ms,
        help=f"Minimum time between reroutes in milliseconds (default: {defaults.reroute_cooldown_ms:g})",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop after this many position updates even if not arrived",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output HTML map file (default: auto-generated from the route source)",
    )
    parser.add_argument(
        "--bbox-buffer",
        type=float,
        default=defaults.bbox_buffer,
        help=f"Map margin around the route in meters (default: {defaults.bbox_buffer:g})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: WARNING)",
    )
    parser.add_argument(
        "--no-open",
        action="store_true",
        help="Don't automatically open the HTML file in browser",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Output structured metrics after the simulation",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"routetrack {__version__}",
    )
    return parser


def build_config(args: argparse.Namespace) -> RouteTrackConfig:
    """Build a RouteTrackConfig from parsed arguments."""
    return RouteTrackConfig(
        update_interval_ms=args.interval_ms,
        base_move_distance_m=args.move_distance,
        max_deviation_m=args.max_deviation,
        reroute_threshold_m=args.reroute_threshold,
        reroute_cooldown_ms=args.reroute_cooldown_ms,
        default_vehicle_profile=args.vehicle,
        bbox_buffer=args.bbox_buffer,
        log_level=args.log_level,
        metrics=args.metrics,
    )


def determine_output_filename(args: argparse.Namespace) -> str:
    """
    Determine the output filename to use.

    Raises:
        RuntimeError: If auto-generation fails
        ValueError: If constructed filename would be illegal
    """
    if args.output is not None:
        return args.output

    try:
        return generate_output_filename(args.gpx or "")
    except (RuntimeError, ValueError) as e:
        logger.error(f"Failed to generate output filename: {e}")
        raise


def open_file_in_browser(filename: str) -> None:
    """
    Open the specified file in the default browser.

    Args:
        filename: Path to the file to open
    """
    abs_path = os.path.abspath(filename)
    try:
        webbrowser.open(f"file://{abs_path}")
        logger.debug(f"Opening {abs_path} in your default browser...")
    except webbrowser.Error as e:
        logger.warning(f"Could not automatically open browser: {e}")
        logger.warning(f"Please manually open {abs_path}")


def setup_logging(args: argparse.Namespace) -> None:
    """Setup logging configuration."""
    level = getattr(logging, args.log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Configure the root logger so all modules inherit the configuration
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress overly verbose third-party logging
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def load_route(
    args: argparse.Namespace,
    track: RouteTrack,
    client: Optional[RoutingClient],
) -> None:
    """
    Set the track's initial route from whichever source was given.

    Raises:
        RouteTrackError: If the route cannot be decoded or fetched
        FileNotFoundError, PermissionError, gpx.GPXException: For GPX input
    """
    if args.gpx:
        positions = load_gpx_file(args.gpx)
        if not positions:
            raise RouteTrackError(f"GPX file contains no points: {args.gpx}")
        track.set_route(positions, positions[0], positions[-1], args.vehicle)
        logger.info(f"Loaded GPX route with {len(positions)} points")
    elif args.polyline:
        positions = polyline.decode(args.polyline)
        if not positions:
            raise RouteTrackError("Encoded polyline contains no points")
        track.set_route(positions, positions[0], positions[-1], args.vehicle)
        logger.info(f"Decoded polyline with {len(positions)} points")
    elif client is None:
        raise RouteTrackError("Fetching a route requires an API key")
    else:
        result = client.find_route(args.start, args.end, args.vehicle)
        track.set_route_result(result, args.start, args.end, args.vehicle)
        summary = format_distance(result.distance or track.length)
        if result.duration is not None:
            summary += f", {format_duration(result.duration)}"
        print(f"Route found: {summary}")


async def run_simulation(
    track: RouteTrack,
    config: RouteTrackConfig,
    client: Optional[RoutingClient],
    args: argparse.Namespace,
) -> Tuple[NavigationSession, SimulationMetrics]:
    """Run the simulation on the current event loop until it finishes."""
    loop = asyncio.get_running_loop()
    engine = SimulationEngine(
        track, config=config, scheduler=loop, rng=random.Random(args.seed)
    )
    engine.set_speed(args.speed)
    engine.set_deviation_enabled(args.simulate_deviation)

    collector = MetricsCollector()
    engine.add_listener(collector)

    session = NavigationSession(track, engine, client=client, loop=loop, config=config)
    await session.run(max_ticks=args.max_ticks)

    return session, collector.collect(session)


def main():
    """
    Parses command-line arguments, loads the route, runs the simulation
    and generates an interactive map of the run.
    """
    parser = create_argument_parser()
    args = parser.parse_args()

    if not (args.gpx or args.polyline or args.start):
        parser.print_help()
        sys.exit(1)
    if args.start and (args.end is None or not args.api_key):
        parser.error("--start requires --end and --api-key")

    setup_logging(args)
    config = build_config(args)

    try:
        output_filename = determine_output_filename(args)
        logger.debug(f"Output filename: {output_filename}")
    except (RuntimeError, ValueError):
        sys.exit(1)

    client = RoutingClient(args.api_key, config) if args.api_key else None
    track = RouteTrack(
        reroute_cooldown_ms=config.reroute_cooldown_ms,
        default_vehicle_profile=VehicleProfile(config.default_vehicle_profile),
    )

    try:
        load_route(args, track, client)
    except FileNotFoundError:
        logger.error(f"GPX file not found: {args.gpx}")
        sys.exit(1)
    except PermissionError:
        logger.error(f"Cannot read GPX file (permission denied): {args.gpx}")
        sys.exit(1)
    except gpx.GPXException as e:
        logger.error(f"Invalid GPX file: {e}")
        sys.exit(1)
    except RouteTrackError as e:
        logger.error(f"Route error: {e}")
        sys.exit(1)

    logger.info(f"Total route distance: {format_distance(track.length)}")

    session, metrics = asyncio.run(run_simulation(track, config, client, args))

    status = "Arrived at destination" if metrics.arrived else "Stopped before arrival"
    print(
        f"{status} after {metrics.position_updates} updates "
        f"({format_distance(metrics.distance_travelled)} travelled, "
        f"{metrics.deviation_events} deviations, "
        f"{metrics.reroutes_completed} reroutes)"
    )
    if not metrics.arrived and metrics.route_length > 0:
        print(
            f"Progress along route: {format_distance(metrics.route_progress)} "
            f"of {format_distance(metrics.route_length)}"
        )

    log_metrics(metrics, config)

    try:
        visualization.create_simulation_map(
            track,
            session.trace,
            session.deviation_points,
            output_filename,
            metrics,
            config,
            route_index=session.engine.route_index,
        )
    except ValueError as e:
        logger.error(f"Failed to create map: {e}")
        sys.exit(1)

    if not args.no_open:
        open_file_in_browser(output_filename)


if __name__ == "__main__":
    main()
