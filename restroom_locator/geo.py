"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import List, Tuple

from . import config

EARTH_RADIUS_M = 6371008.8

Coordinate = Tuple[float, float]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters between two (lat, lng) pairs."""
    return haversine_m(a[0], a[1], b[0], b[1])


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """False for the (0, 0) sentinel, NaN, and out-of-range values."""
    if lat is None or lng is None:
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    if lat == 0.0 or lng == 0.0:
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def decode_polyline(encoded: str) -> List[Coordinate]:
    points: List[Coordinate] = []
    index = 0
    lat = 0
    lng = 0
    length = len(encoded)

    while index < length:
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append((lat / 1e5, lng / 1e5))
    return points


def format_distance(meters: float) -> str:
    if meters < config.METERS_PER_MILE:
        return f"{int(meters)} m"
    return f"{meters / config.METERS_PER_MILE:.1f} mi"
