"""
eta.py — Delivery ETA Estimation

Estimates distance and travel time between a delivery rider and the
customer's address from their coordinates.

Model:
    • Great-circle (Haversine) distance, Earth radius 6371 km
    • Road distance = great-circle distance * 1.4
    • Travel time from an average speed per vehicle type
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

EARTH_RADIUS_KM = 6371.0
ROAD_FACTOR = 1.4
DEFAULT_VEHICLE = "motorcycle"
NEAR_DESTINATION_KM = 0.5

# km/h in city traffic
AVERAGE_SPEEDS_KPH = {
    "motorcycle": 25,
    "bicycle": 12,
    "van": 20,
}


@dataclass
class EtaResult:
    distance_km: float
    duration_minutes: int
    formatted_eta: str
    arrival_time: datetime


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two (lat, lon) points in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def average_speed(vehicle_type: Optional[str]) -> float:
    return AVERAGE_SPEEDS_KPH.get(vehicle_type or DEFAULT_VEHICLE, AVERAGE_SPEEDS_KPH[DEFAULT_VEHICLE])


def format_eta(duration_minutes: int) -> str:
    """
    Renders a duration for display.

    Examples:
        0 → "Arriving now", 45 → "45 min", 120 → "2h", 135 → "2h 15m"
    """
    if duration_minutes < 1:
        return "Arriving now"
    if duration_minutes < 60:
        return f"{duration_minutes} min"
    hours, minutes = divmod(duration_minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def calculate_eta(rider_lat: float, rider_lng: float, dest_lat: float, dest_lng: float,
                  vehicle_type: str = DEFAULT_VEHICLE, now: datetime = None) -> EtaResult:
    """
    Estimates when a rider reaches the destination.

    Args:
        rider_lat, rider_lng (float): Current rider position.
        dest_lat, dest_lng (float): Destination.
        vehicle_type (str): Key of AVERAGE_SPEEDS_KPH; unknown types use the
            motorcycle speed.
        now (datetime): Reference time for `arrival_time` (defaults to UTC now).

    Returns:
        EtaResult: Road distance rounded to 0.1 km, whole minutes, display
            text and arrival time.
    """
    road_km = haversine_km(rider_lat, rider_lng, dest_lat, dest_lng) * ROAD_FACTOR
    duration_minutes = int(_round_half_up(road_km / average_speed(vehicle_type) * 60))
    now = now or datetime.now(timezone.utc)
    return EtaResult(
        distance_km=_round_half_up(road_km, 1),
        duration_minutes=duration_minutes,
        formatted_eta=format_eta(duration_minutes),
        arrival_time=now + timedelta(minutes=duration_minutes),
    )


def is_near_destination(distance_km: float, threshold_km: float = NEAR_DESTINATION_KM) -> bool:
    return distance_km <= threshold_km
