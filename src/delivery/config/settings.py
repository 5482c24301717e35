"""Delivery settings read from the environment."""

import os
from dataclasses import dataclass

from delivery.routing.geo import EARTH_RADIUS_KM


@dataclass(frozen=True)
class DeliverySettings:
    average_speed_kmh: float = 30.0
    earth_radius_km: float = EARTH_RADIUS_KM
    service_minutes: float = 0.0
    optimizer: str = "nearest_neighbor"
    lock_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "DeliverySettings":
        settings = cls(
            average_speed_kmh=float(os.environ.get("DELIVERY_AVERAGE_SPEED_KMH", cls.average_speed_kmh)),
            earth_radius_km=float(os.environ.get("DELIVERY_EARTH_RADIUS_KM", cls.earth_radius_km)),
            service_minutes=float(os.environ.get("DELIVERY_SERVICE_MINUTES", cls.service_minutes)),
            optimizer=os.environ.get("DELIVERY_ROUTE_OPTIMIZER", cls.optimizer),
            lock_timeout_seconds=float(os.environ.get("DELIVERY_LOCK_TIMEOUT_SECONDS", cls.lock_timeout_seconds)),
        )
        if settings.average_speed_kmh <= 0:
            raise ValueError("DELIVERY_AVERAGE_SPEED_KMH must be positive")
        if settings.earth_radius_km <= 0:
            raise ValueError("DELIVERY_EARTH_RADIUS_KM must be positive")
        return settings
