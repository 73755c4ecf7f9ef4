from dataclasses import dataclass


@dataclass
class RouteTrackConfig:
    """Configuration for route tracking and simulation."""

    update_interval_ms: float = 1000.0
    base_move_distance_m: float = 10.0
    max_deviation_m: float = 50.0
    reroute_threshold_m: float = 30.0
    reroute_cooldown_ms: float = 3000.0
    arrival_threshold_m: float = 30.0
    default_vehicle_profile: str = "motorcycle"
    routing_api_url: str = "https://maps.vietmap.vn/api/route"
    routing_api_version: str = "1.1"
    routing_timeout: int = 30
    bbox_buffer: float = 50.0
    log_level: str = "WARNING"
    metrics: bool = False
