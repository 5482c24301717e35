"""Geospatial kernel: great-circle distances and nearest-neighbour sequencing.

Coordinates are ``(longitude, latitude)`` pairs in decimal degrees throughout,
matching the GeoJSON ordering used by the delivery order.
"""

import math
from collections.abc import Sequence
from datetime import datetime, timedelta

EARTH_RADIUS_KM = 6371.0

Coordinates = tuple[float, float]


def haversine_km(origin: Coordinates, destination: Coordinates, radius_km: float = EARTH_RADIUS_KM) -> float:
    """Great-circle distance between two points, in kilometres."""
    lon1, lat1 = origin
    lon2, lat2 = destination

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius_km * c


def nearest_neighbor_order(
    start: Coordinates,
    points: Sequence[Coordinates],
    radius_km: float = EARTH_RADIUS_KM,
) -> list[int]:
    """Return the visiting order of ``points`` (as indices) starting from ``start``.

    At each step the closest unvisited point is taken. Ties keep input order:
    only a strictly shorter distance displaces the current best candidate.
    """
    remaining = list(range(len(points)))
    order: list[int] = []
    current = start

    while remaining:
        best_pos = 0
        best_distance = haversine_km(current, points[remaining[0]], radius_km)
        for pos in range(1, len(remaining)):
            distance = haversine_km(current, points[remaining[pos]], radius_km)
            if distance < best_distance:
                best_pos = pos
                best_distance = distance

        index = remaining.pop(best_pos)
        order.append(index)
        current = points[index]

    return order


def route_distance_km(
    start: Coordinates,
    points: Sequence[Coordinates],
    end: Coordinates | None = None,
    radius_km: float = EARTH_RADIUS_KM,
) -> float:
    """Sum of consecutive legs from ``start`` through ``points`` (and on to ``end``)."""
    total = 0.0
    current = start
    for point in points:
        total += haversine_km(current, point, radius_km)
        current = point
    if end is not None:
        total += haversine_km(current, end, radius_km)
    return total


def travel_minutes(distance_km: float, speed_kmh: float) -> float:
    return distance_km / speed_kmh * 60


def project_arrivals(
    origin: Coordinates,
    points: Sequence[Coordinates],
    departure: datetime,
    speed_kmh: float,
    radius_km: float = EARTH_RADIUS_KM,
    service_minutes: float = 0.0,
) -> list[datetime]:
    """Estimated arrival time at each point when travelling them in order.

    ``service_minutes`` is the dwell time spent at each stop before moving on.
    """
    arrivals: list[datetime] = []
    elapsed = 0.0
    current = origin
    for point in points:
        elapsed += travel_minutes(haversine_km(current, point, radius_km), speed_kmh)
        arrivals.append(departure + timedelta(minutes=elapsed))
        elapsed += service_minutes
        current = point
    return arrivals
