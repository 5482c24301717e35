"""Delivery order assignment: command and handler."""

from protean import handle
from protean.fields import Date, Identifier, String
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder, DeliveryOrderStatus
from delivery.domain import delivery
from delivery.references import ensure_references


@delivery.command(part_of="DeliveryOrder")
class AssignDeliveryOrder:
    """Assign a vehicle, driver and optional helper to a pending delivery order."""

    order_id = Identifier(required=True)
    vehicle_id = Identifier(required=True)
    driver_id = Identifier(required=True)
    helper_id = Identifier()
    scheduled_date = Date()
    scheduled_time = String(max_length=5)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class AssignDeliveryOrderHandler:
    @handle(AssignDeliveryOrder)
    def assign_delivery_order(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.assert_can_transition(DeliveryOrderStatus.ASSIGNED)
        ensure_references(
            vehicle=command.vehicle_id,
            driver=command.driver_id,
            helper=command.helper_id,
        )
        order.assign(
            vehicle_id=command.vehicle_id,
            driver_id=command.driver_id,
            helper_id=command.helper_id,
            scheduled_date=command.scheduled_date,
            scheduled_time=command.scheduled_time,
            performed_by=command.performed_by,
        )
        repo.add(order)
        return order
