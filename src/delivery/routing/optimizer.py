"""Route optimizer port and the default nearest-neighbour adapter.

The route engine programs against ``RouteOptimizer``; a VRP solver can be
plugged in later through ``DELIVERY_ROUTE_OPTIMIZER``.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from delivery.routing.geo import EARTH_RADIUS_KM, Coordinates, nearest_neighbor_order


class RouteOptimizer(ABC):
    """Abstract interface for stop sequencing strategies."""

    @abstractmethod
    def sequence(self, start: Coordinates, points: Sequence[Coordinates]) -> list[int]:
        """Return the indices of ``points`` in visiting order.

        Implementations must be deterministic and return every index exactly once.
        """
        ...


class NearestNeighborOptimizer(RouteOptimizer):
    """Greedy nearest-neighbour sequencing on great-circle distance."""

    def __init__(self, radius_km: float = EARTH_RADIUS_KM):
        self.radius_km = radius_km

    def sequence(self, start: Coordinates, points: Sequence[Coordinates]) -> list[int]:
        return nearest_neighbor_order(start, points, self.radius_km)
