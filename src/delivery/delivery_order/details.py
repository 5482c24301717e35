"""Editing a delivery order before the run starts: command and handler."""

import structlog
from protean import handle
from protean.fields import Date, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.delivery_order.creation import location_from
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery

logger = structlog.get_logger(__name__)


@delivery.command(part_of="DeliveryOrder")
class UpdateDeliveryOrder:
    """Edit schedule, priority, notes or locations of a pending or assigned order."""

    order_id = Identifier(required=True)
    priority = String(max_length=10)
    notes = Text()
    scheduled_date = Date()
    scheduled_time = String(max_length=5)
    start_longitude = Float()
    start_latitude = Float()
    start_address = String(max_length=500)
    end_longitude = Float()
    end_latitude = Float()
    end_address = String(max_length=500)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class UpdateDeliveryOrderHandler:
    @handle(UpdateDeliveryOrder)
    def update_delivery_order(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        changed = order.update_details(
            performed_by=command.performed_by,
            priority=command.priority,
            notes=command.notes,
            scheduled_date=command.scheduled_date,
            scheduled_time=command.scheduled_time,
            start_location=location_from(command.start_longitude, command.start_latitude, command.start_address),
            end_location=location_from(command.end_longitude, command.end_latitude, command.end_address),
        )
        repo.add(order)
        if changed:
            logger.info("Delivery order updated", order_id=str(order.id), changed_fields=changed)
        return order
