#!/usr/bin/env python3
"""
Simulation visualization using folium maps.
"""

from typing import Optional, Sequence
import logging
import folium
from folium.template import Template

from .config import RouteTrackConfig
from .geometry import Position
from .metrics import SimulationMetrics
from .route import RouteTrack

logger = logging.getLogger(__name__)

ROUTE_COLOR = "#1A73E8"
TRACE_COLOR = "#2E86AB"
DEVIATION_COLOR = "#D23C4C"
ROUTE_AHEAD_COLOR = "#F29900"


class SimulationLegend(folium.MacroElement):
    """Custom legend for the simulation map with run statistics."""

    def __init__(
        self,
        metrics: Optional[SimulationMetrics],
        trace_points: int,
        show_route_ahead: bool = False,
    ):
        super().__init__()
        self.trace_points = trace_points
        self.show_route_ahead = show_route_ahead
        self.deviation_count = metrics.deviation_events if metrics else 0
        self.reroute_count = metrics.reroutes_completed if metrics else 0
        self.arrived = metrics.arrived if metrics else False
        self.route_length_km = metrics.route_length / 1000 if metrics else 0.0
        self.route_progress_km = metrics.route_progress / 1000 if metrics else 0.0

        self._template = Template(
            """
        {% macro html(this, kwargs) %}
        <div id="routetrack-legend" style="
            position: fixed;
            bottom: 50px;
            left: 50px;
            width: 230px;
            min-height: 90px;
            background-color: white;
            border: 2px solid grey;
            z-index: 9999;
            font-size: 13px;
            padding: 12px;
            font-family: Arial, sans-serif;
            border-radius: 5px;
            box-shadow: 0 2px 5px rgba(0,0,0,0.2);
            box-sizing: border-box;
        ">
            <b>Legend</b><br>
            <div style="margin: 4px 0; line-height: 1.3;">
                <span style="color: #1A73E8; font-weight: bold; font-size: 18px;">&#9473;</span>
                Active Route
            </div>
            {% if this.show_route_ahead %}
            <div style="margin: 4px 0; line-height: 1.3;">
                <span style="color: #F29900; font-weight: bold; font-size: 18px;">&#9473;</span>
                Route Ahead
            </div>
            {% endif %}
            <div style="margin: 4px 0; line-height: 1.3;">
                <span style="color: #2E86AB; font-weight: normal; font-size: 18px;">&#9473;</span>
                Simulated Trace ({{ this.trace_points }} points)
            </div>
            <div style="margin: 4px 0; line-height: 1.3;">
                <span style="color: #D23C4C; font-size: 16px;">&#9679;</span>
                Deviations ({{ this.deviation_count }})
            </div>
            {% if this.route_length_km > 0 %}
            <div style="margin: 4px 0; line-height: 1.3;">
                Progress: {{ "%.2f"|format(this.route_progress_km) }} of {{ "%.2f"|format(this.route_length_km) }} km
            </div>
            {% endif %}
            {% if this.reroute_count > 0 %}
            <div style="margin: 4px 0; line-height: 1.3;">
                Reroutes: {{ this.reroute_count }}
            </div>
            {% endif %}
            <div style="margin: 4px 0; line-height: 1.3;">
                {% if this.arrived %}Arrived at destination{% else %}Did not arrive{% endif %}
            </div>
        </div>
        {% endmacro %}
        """
        )


def create_simulation_map(
    track: RouteTrack,
    trace: Sequence[Position],
    deviation_points: Sequence[Position],
    output_filename: str,
    metrics: Optional[SimulationMetrics] = None,
    config: Optional[RouteTrackConfig] = None,
    route_index: Optional[int] = None,
) -> None:
    """
    Create an interactive map of the active route and the simulated trace, save as HTML.

    Args:
        track: RouteTrack holding the final active route
        trace: Simulated positions in the order they were produced
        deviation_points: Positions where a deviation was detected
        output_filename: Path where HTML map file should be saved
        metrics: SimulationMetrics for the legend
        config: Settings such as bbox_buffer
        route_index: Index of the last route vertex reached; when given and
            the run did not arrive, the route still ahead of the final
            position is highlighted

    Raises:
        ValueError: If no route is set
    """
    if not track.is_active:
        raise ValueError("Cannot create map for empty route")

    config = config or RouteTrackConfig()

    south, west, north, east = track.get_bbox(config.bbox_buffer)
    # Widen the bounds so a trace that wandered off an old route stays visible
    for pos in list(trace) + list(deviation_points):
        south, north = min(south, pos.latitude), max(north, pos.latitude)
        west, east = min(west, pos.longitude), max(east, pos.longitude)

    center_lat = (south + north) / 2
    center_lon = (west + east) / 2

    logger.debug(f"Creating map centered at ({center_lat:.4f}, {center_lon:.4f})")

    sim_map = folium.Map(
        location=[center_lat, center_lon],
        tiles=None,
    )

    folium.TileLayer(
        tiles="CartoDB positron",
        attr=(
            "&copy; <a href='https://www.openstreetmap.org/copyright'>OpenStreetMap</a> "
            "contributors &copy; <a href='https://carto.com/attributions'>CARTO</a>"
        ),
        name="Standard",
        control=True,
        show=True,
    ).add_to(sim_map)

    folium.TileLayer(
        tiles="https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
        attr=(
            "Tiles &copy; Esri, Source: Esri, i-cubed, USDA, USGS, AEX, GeoEye, "
            "Getmapping, Aerogrid, IGN, IGP, UPR-EGP, and the GIS User Community"
        ),
        name="Satellite",
        control=True,
        show=False,
    ).add_to(sim_map)

    folium.LayerControl().add_to(sim_map)

    route_coords = [[pos.latitude, pos.longitude] for pos in track.geometry]
    folium.PolyLine(
        route_coords,
        color=ROUTE_COLOR,
        weight=5,
        opacity=0.8,
        popup=f"Active Route ({track.length / 1000:.2f} km, {track.vehicle_profile})",
        z_index=1,
    ).add_to(sim_map)

    if len(trace) >= 2:
        folium.PolyLine(
            [[pos.latitude, pos.longitude] for pos in trace],
            color=TRACE_COLOR,
            weight=2,
            opacity=0.9,
            dash_array="4 6",
            popup="Simulated Trace",
            z_index=2,
        ).add_to(sim_map)

    show_route_ahead = False
    arrived = metrics.arrived if metrics else False
    if trace and route_index is not None and not arrived:
        ahead = track.remaining_geometry(trace[-1], route_index)
        if len(ahead) >= 2:
            folium.PolyLine(
                [[pos.latitude, pos.longitude] for pos in ahead],
                color=ROUTE_AHEAD_COLOR,
                weight=6,
                opacity=0.9,
                popup="Route Ahead",
                z_index=3,
            ).add_to(sim_map)
            show_route_ahead = True

    start = track.start_point or track.geometry[0]
    end = track.end_point or track.geometry[-1]

    folium.Marker(
        [start.latitude, start.longitude],
        popup="Start",
        icon=folium.Icon(color="green", icon="play"),
    ).add_to(sim_map)

    folium.Marker(
        [end.latitude, end.longitude],
        popup="End",
        icon=folium.Icon(color="red", icon="stop"),
    ).add_to(sim_map)

    for i, pos in enumerate(deviation_points, start=1):
        folium.CircleMarker(
            [pos.latitude, pos.longitude],
            radius=6,
            color=DEVIATION_COLOR,
            fill=True,
            fill_opacity=0.8,
            popup=f"Deviation {i}",
        ).add_to(sim_map)

    sim_map.add_child(SimulationLegend(metrics, len(trace), show_route_ahead))

    sim_map.fit_bounds([[south, west], [north, east]])

    sim_map.save(output_filename)

    logger.debug(
        f"Map saved to {output_filename} with {len(trace)} trace points and "
        f"{len(deviation_points)} deviations"
    )
