"""Geospatial utilities including Haversine distance calculation."""

import json
import math
from dataclasses import dataclass


# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Sender coordinates are only disclosed within this distance
PROXIMITY_THRESHOLD_KM = 1.0


@dataclass(frozen=True)
class Coordinates:
    """A WGS84 position in decimal degrees."""

    latitude: float
    longitude: float

    def to_json(self) -> str:
        """Compact JSON payload used as the encryption plaintext."""
        return json.dumps(
            {"latitude": self.latitude, "longitude": self.longitude},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, payload: str) -> "Coordinates":
        """
        Parse a payload produced by to_json().

        Raises:
            ValueError: If the payload is not a latitude/longitude object
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Coordinate payload must be an object")

        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid coordinate payload: {e}") from e

        return cls(latitude=latitude, longitude=longitude)

    def display(self, precision: int = 4) -> str:
        return f"{self.latitude:.{precision}f}, {self.longitude:.{precision}f}"


def calculate_distance_km(a: Coordinates, b: Coordinates) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Uses the Haversine formula with a mean Earth radius of 6371 km.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in kilometers between the two points
    """
    # Convert to radians
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    # Haversine formula
    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def is_within_range(a: Coordinates, b: Coordinates, max_km: float) -> bool:
    """
    Check if two points are within a given distance of each other.

    Args:
        a: First point
        b: Second point
        max_km: Maximum distance in kilometers (inclusive)

    Returns:
        True if distance <= max_km
    """
    return calculate_distance_km(a, b) <= max_km


def destination_point(
    origin: Coordinates, distance_km: float, bearing_deg: float
) -> Coordinates:
    """
    Inverse Haversine: the point reached by travelling from origin.

    Uses the same spherical model as calculate_distance_km(), so the
    distance back to origin equals distance_km up to float rounding.

    Args:
        origin: Starting point
        distance_km: Great-circle distance to travel
        bearing_deg: Initial bearing in degrees (0 = north, 90 = east)

    Returns:
        Destination coordinates, longitude normalised to [-180, 180)
    """
    angular = distance_km / EARTH_RADIUS_KM
    bearing = math.radians(bearing_deg)
    lat1 = math.radians(origin.latitude)
    lon1 = math.radians(origin.longitude)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )

    longitude = (math.degrees(lon2) + 540) % 360 - 180
    return Coordinates(latitude=math.degrees(lat2), longitude=longitude)


def format_distance(distance_km: float) -> str:
    """
    Human-readable distance.

    Returns:
        "<n> meters" below 1 km, otherwise "<x.xx> km"
    """
    if distance_km < 1:
        return f"{distance_km * 1000:.0f} meters"
    return f"{distance_km:.2f} km"
