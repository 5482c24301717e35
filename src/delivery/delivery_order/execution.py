"""Delivery run execution: start, complete, cancel, fail and reopen.

Completion is always explicit: recording the last proof of delivery does not
close the order on its own.
"""

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.delivery_order.creation import location_from
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery

logger = structlog.get_logger(__name__)


@delivery.command(part_of="DeliveryOrder")
class StartDelivery:
    """The crew leaves the branch with an assigned delivery order."""

    order_id = Identifier(required=True)
    longitude = Float()
    latitude = Float()
    address = String(max_length=500)
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class CompleteDelivery:
    """Close a delivery run once every item has an outcome."""

    order_id = Identifier(required=True)
    longitude = Float()
    latitude = Float()
    notes = Text()
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class CancelDeliveryOrder:
    """Cancel a delivery order that has not started."""

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class FailDeliveryOrder:
    """Abandon a delivery run in progress."""

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    longitude = Float()
    latitude = Float()
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class ReopenDeliveryOrder:
    """Put a failed or cancelled delivery order back to pending."""

    order_id = Identifier(required=True)
    notes = Text()
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class DeliveryExecutionHandler:
    @handle(StartDelivery)
    def start_delivery(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.start(
            performed_by=command.performed_by,
            location=location_from(command.longitude, command.latitude, command.address),
        )
        repo.add(order)
        return order

    @handle(CompleteDelivery)
    def complete_delivery(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.complete(
            performed_by=command.performed_by,
            location=location_from(command.longitude, command.latitude),
            notes=command.notes,
        )
        repo.add(order)
        logger.info(
            "Delivery order closed",
            order_id=str(order.id),
            status=order.status,
            delivered_count=order.summary.delivered_count,
            failed_count=order.summary.failed_count,
            returned_count=order.summary.returned_count,
        )
        return order

    @handle(CancelDeliveryOrder)
    def cancel_delivery_order(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.cancel(reason=command.reason, performed_by=command.performed_by)
        repo.add(order)
        return order

    @handle(FailDeliveryOrder)
    def fail_delivery_order(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.fail(
            reason=command.reason,
            performed_by=command.performed_by,
            location=location_from(command.longitude, command.latitude),
        )
        repo.add(order)
        logger.warning("Delivery run failed", order_id=str(order.id), reason=command.reason)
        return order

    @handle(ReopenDeliveryOrder)
    def reopen_delivery_order(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.reopen(performed_by=command.performed_by, notes=command.notes)
        repo.add(order)
        return order
