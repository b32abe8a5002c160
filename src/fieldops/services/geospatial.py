"""Geospatial helper functions."""

from __future__ import annotations

import math

from ..errors import ValidationError

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute great-circle distance in meters using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise ValidationError when a latitude/longitude pair is out of range."""

    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude {lat} is outside [-90, 90].")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"Longitude {lon} is outside [-180, 180].")
