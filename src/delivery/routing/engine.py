"""Route engine: builds a sequenced route plan from delivery stop candidates.

The engine is a pure domain service: it takes coordinates and a departure
time and returns stop sequences, distances and arrival estimates. It never
touches the repository; the DeliveryOrder aggregate applies its results.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from delivery.config import get_settings
from delivery.config.settings import DeliverySettings
from delivery.routing import get_route_optimizer
from delivery.routing.geo import Coordinates, project_arrivals, route_distance_km
from delivery.routing.optimizer import RouteOptimizer

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StopCandidate:
    """A delivery destination that can be placed on the route."""

    coordinates: Coordinates
    item_id: str | None = None
    waybill_number: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class PlannedStop:
    candidate: StopCandidate
    sequence: int
    estimated_arrival: datetime


@dataclass(frozen=True)
class PlannedRoute:
    stops: list[PlannedStop] = field(default_factory=list)
    total_distance_km: float = 0.0
    estimated_duration_min: int = 0


class RouteEngine:
    def __init__(self, settings: DeliverySettings | None = None, optimizer: RouteOptimizer | None = None):
        self.settings = settings or get_settings()
        self.optimizer = optimizer or get_route_optimizer()

    def effective_speed(self, speed_kmh: float | None = None) -> float:
        """Observed speed when usable, otherwise the configured average."""
        if speed_kmh is not None and speed_kmh > 0:
            return speed_kmh
        return self.settings.average_speed_kmh

    def plan(
        self,
        start: Coordinates,
        candidates: Sequence[StopCandidate],
        departure: datetime,
        end: Coordinates | None = None,
    ) -> PlannedRoute:
        """Sequence ``candidates`` from ``start`` and estimate arrivals from ``departure``.

        Total distance covers every consecutive leg plus the final leg to ``end``
        when one is given. Duration is the total distance at the average speed plus
        the dwell time at each stop, rounded up to whole minutes.
        """
        points = [c.coordinates for c in candidates]
        order = self.optimizer.sequence(start, points)
        ordered = [candidates[i] for i in order]
        ordered_points = [c.coordinates for c in ordered]

        total_distance = route_distance_km(start, ordered_points, end, self.settings.earth_radius_km)
        duration = math.ceil(
            total_distance / self.settings.average_speed_kmh * 60 + self.settings.service_minutes * len(ordered)
        )
        arrivals = project_arrivals(
            start,
            ordered_points,
            departure,
            self.settings.average_speed_kmh,
            self.settings.earth_radius_km,
            self.settings.service_minutes,
        )

        stops = [
            PlannedStop(candidate=candidate, sequence=position, estimated_arrival=arrival)
            for position, (candidate, arrival) in enumerate(zip(ordered, arrivals, strict=True), start=1)
        ]

        logger.debug(
            "Route planned",
            stop_count=len(stops),
            total_distance_km=round(total_distance, 3),
            estimated_duration_min=duration,
        )
        return PlannedRoute(
            stops=stops,
            total_distance_km=total_distance,
            estimated_duration_min=duration,
        )

    def reproject(
        self,
        origin: Coordinates,
        points: Sequence[Coordinates],
        observed_at: datetime,
        speed_kmh: float | None = None,
    ) -> list[datetime]:
        """Arrival estimates for ``points`` (already in visiting order) from a live position."""
        return project_arrivals(
            origin,
            points,
            observed_at,
            self.effective_speed(speed_kmh),
            self.settings.earth_radius_km,
            self.settings.service_minutes,
        )
