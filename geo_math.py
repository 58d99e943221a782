"""
Coordinate primitives for GeoScore: the Point type, coordinate validation,
and great-circle distance.
"""

import math
from typing import NamedTuple

from scoring_config import SCORING_MODEL


class InvalidInput(ValueError):
    """Raised when coordinates are missing, non-numeric, NaN, or out of range."""


class Point(NamedTuple):
    lat: float
    lng: float


def validate_point(point) -> Point:
    """Return *point* as a Point, raising InvalidInput if it is unusable.

    Accepts a Point or any ``(lat, lng)`` pair.
    """
    try:
        lat, lng = point
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Coordinates must be a (lat, lng) pair of numbers: {point!r}") from e

    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidInput(f"Coordinates must be finite: ({lat}, {lng})")
    if not -90.0 <= lat <= 90.0:
        raise InvalidInput(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidInput(f"Longitude {lng} outside [-180, 180]")
    return Point(lat, lng)


def distance_meters(a: Point, b: Point) -> float:
    """Straight-line (haversine) distance between two points in meters."""
    R = SCORING_MODEL.earth_radius_m
    phi1 = math.radians(a[0])
    phi2 = math.radians(b[0])
    dphi = math.radians(b[0] - a[0])
    dlmb = math.radians(b[1] - a[1])

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return R * c
