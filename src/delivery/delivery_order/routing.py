"""Route commands: stop sequencing and stop arrival."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery
from delivery.routing.engine import RouteEngine

logger = structlog.get_logger(__name__)


@delivery.command(part_of="DeliveryOrder")
class OptimizeRoute:
    """Sequence the order's stops from its start location."""

    order_id = Identifier(required=True)
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class MarkStopArrived:
    """Record that the crew reached a route stop."""

    order_id = Identifier(required=True)
    stop_id = Identifier(required=True)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class RouteHandler:
    @handle(OptimizeRoute)
    def optimize_route(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.optimize_route(performed_by=command.performed_by, engine=RouteEngine())
        repo.add(order)
        logger.info(
            "Route optimized",
            order_id=str(order.id),
            stop_count=len(order.route_stops),
            total_distance_km=round(order.route.total_distance_km, 3),
            estimated_duration_min=order.route.estimated_duration_min,
        )
        return order

    @handle(MarkStopArrived)
    def mark_stop_arrived(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.mark_stop_arrived(command.stop_id, performed_by=command.performed_by)
        repo.add(order)
        return order
