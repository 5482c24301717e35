"""Route optimizer selection: pluggable stop sequencing strategy."""

from delivery.config import get_settings

_optimizer_instance = None


def get_route_optimizer():
    """Return the configured route optimizer (singleton).

    Uses nearest-neighbour sequencing by default. Configure via the
    DELIVERY_ROUTE_OPTIMIZER environment variable.
    """
    global _optimizer_instance
    if _optimizer_instance is None:
        settings = get_settings()
        if settings.optimizer == "nearest_neighbor":
            from delivery.routing.optimizer import NearestNeighborOptimizer

            _optimizer_instance = NearestNeighborOptimizer(radius_km=settings.earth_radius_km)
        else:
            raise ValueError(f"Unknown route optimizer: {settings.optimizer}")
    return _optimizer_instance


def reset_route_optimizer():
    """Reset the optimizer singleton (useful for testing)."""
    global _optimizer_instance
    _optimizer_instance = None
