"""Delivery tracking: command and handler for live vehicle positions.

Observations are accepted in every order status. While the order is in
progress they also refresh the arrival estimates of open stops.
"""

from protean import handle
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery
from delivery.routing.engine import RouteEngine


@delivery.command(part_of="DeliveryOrder")
class UpdateTrackingLocation:
    """Record an observed vehicle position."""

    order_id = Identifier(required=True)
    longitude = Float(required=True)
    latitude = Float(required=True)
    speed = Float()  # km/h
    heading = Float()
    accuracy = Float()  # metres
    address = String(max_length=500)
    provider = String(max_length=50)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class TrackingHandler:
    @handle(UpdateTrackingLocation)
    def update_tracking_location(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.record_location(
            longitude=command.longitude,
            latitude=command.latitude,
            performed_by=command.performed_by,
            speed=command.speed,
            heading=command.heading,
            accuracy=command.accuracy,
            address=command.address,
            provider=command.provider,
            engine=RouteEngine(),
        )
        repo.add(order)
        return order
