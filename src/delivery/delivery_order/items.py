"""Delivery items: commands and handler for adding and removing items."""

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.delivery_order.creation import json_payload
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery
from delivery.references import ensure_references


@delivery.command(part_of="DeliveryOrder")
class AddDeliveryItem:
    """Add an item to a pending or assigned delivery order."""

    order_id = Identifier(required=True)
    item = Text(required=True)  # JSON item dict
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class RemoveDeliveryItem:
    """Remove an item from a pending or assigned delivery order."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class DeliveryItemHandler:
    @handle(AddDeliveryItem)
    def add_item(self, command):
        item_data = json_payload(command.item, "item", dict)
        ensure_references(shipment_order=item_data.get("shipment_order_ref"))

        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.add_item(item_data, performed_by=command.performed_by)
        repo.add(order)
        return order

    @handle(RemoveDeliveryItem)
    def remove_item(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.remove_item(command.item_id, performed_by=command.performed_by)
        repo.add(order)
        return order
