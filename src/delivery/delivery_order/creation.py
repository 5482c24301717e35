"""Delivery order creation: command and handler.

The order number is derived from the branch's highest sequence for the day,
so creation for a branch must be serialized (see ``locking.branch_lock_key``).
The unique ``order_number`` field rejects any duplicate that slips through.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Date, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery import clock
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.delivery_order.numbering import (
    format_order_number,
    next_sequence,
    normalize_branch_code,
    number_date,
)
from delivery.domain import delivery
from delivery.references import ensure_references

logger = structlog.get_logger(__name__)


def location_from(longitude, latitude, address=None) -> dict | None:
    """Location mapping from flat command fields, or None when no coordinates were sent."""
    if longitude is None and latitude is None:
        return None
    return {"longitude": longitude, "latitude": latitude, "address": address}


def json_payload(value, field_name: str, expected: type):
    """Decode a JSON text command field, rejecting malformed or mistyped payloads."""
    if not isinstance(value, str):
        decoded = value
    else:
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValidationError({field_name: [f"Malformed JSON: {exc.msg}"]}) from exc
    if not isinstance(decoded, expected):
        raise ValidationError({field_name: [f"Expected a JSON {expected.__name__}"]})
    return decoded


@delivery.command(part_of="DeliveryOrder")
class CreateDeliveryOrder:
    """Create a pending delivery order for a branch."""

    branch_id = Identifier(required=True)
    branch_code = String(required=True, max_length=2)
    scheduled_date = Date(required=True)
    scheduled_time = String(max_length=5)
    priority = String(max_length=10)
    notes = Text()
    start_longitude = Float(required=True)
    start_latitude = Float(required=True)
    start_address = String(max_length=500)
    end_longitude = Float()
    end_latitude = Float()
    end_address = String(max_length=500)
    vehicle_id = Identifier()
    driver_id = Identifier()
    helper_id = Identifier()
    items = Text(required=True)  # JSON list of item dicts
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class CreateDeliveryOrderHandler:
    @handle(CreateDeliveryOrder)
    def create_delivery_order(self, command):
        items_data = json_payload(command.items, "items", list)
        if not all(isinstance(i, dict) for i in items_data):
            raise ValidationError({"items": ["Every item must be a JSON object"]})
        branch_code = normalize_branch_code(command.branch_code)
        ensure_references(
            branch=command.branch_id,
            vehicle=command.vehicle_id,
            driver=command.driver_id,
            helper=command.helper_id,
            shipment_order=[i.get("shipment_order_ref") for i in items_data if i.get("shipment_order_ref")],
        )

        day = clock.today()
        sequence = next_sequence(branch_code, day)
        order = DeliveryOrder.create(
            order_number=format_order_number(day, branch_code, sequence),
            branch_id=command.branch_id,
            branch_code=branch_code,
            number_date=number_date(day),
            number_sequence=sequence,
            scheduled_date=command.scheduled_date,
            scheduled_time=command.scheduled_time,
            priority=command.priority,
            notes=command.notes,
            start_location=location_from(command.start_longitude, command.start_latitude, command.start_address),
            end_location=location_from(command.end_longitude, command.end_latitude, command.end_address),
            vehicle_id=command.vehicle_id,
            driver_id=command.driver_id,
            helper_id=command.helper_id,
            items_data=items_data,
            created_by=command.performed_by,
        )
        current_domain.repository_for(DeliveryOrder).add(order)
        logger.info(
            "Delivery order created",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(items_data),
        )
        return str(order.id)
