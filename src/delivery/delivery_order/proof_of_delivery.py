"""Item outcomes: proof of delivery, COD payment, failed attempts and returns."""

from protean import handle
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.delivery_order.creation import json_payload, location_from
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.domain import delivery


@delivery.command(part_of="DeliveryOrder")
class RecordProofOfDelivery:
    """Capture the hand-over of an item, optionally with COD collection."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    delivered_to = String(required=True, max_length=200)
    relationship = String(max_length=100)
    id_number = String(max_length=100)
    signature_ref = String(required=True, max_length=500)
    photos = Text()  # JSON list of photo references
    notes = Text()
    longitude = Float()
    latitude = Float()
    cod_collected = Boolean(default=False)
    cod_amount = Float()
    payment_method = String(max_length=20)
    receipt_number = String(max_length=100)
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class RecordCODPayment:
    """Record how a COD item was paid."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    amount = Float()
    payment_method = String(required=True, max_length=20)
    receipt_number = String(max_length=100)
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class RecordFailedDelivery:
    """Record that an item could not be delivered."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    longitude = Float()
    latitude = Float()
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="DeliveryOrder")
class RecordItemReturn:
    """Record that an item is going back to the branch."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=DeliveryOrder)
class ItemOutcomeHandler:
    @handle(RecordProofOfDelivery)
    def record_proof_of_delivery(self, command):
        photos = json_payload(command.photos, "photos", list) if command.photos else []
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.record_proof_of_delivery(
            command.item_id,
            {
                "delivered_to": command.delivered_to,
                "relationship": command.relationship,
                "id_number": command.id_number,
                "signature_ref": command.signature_ref,
                "photos": photos,
                "notes": command.notes,
                "location": location_from(command.longitude, command.latitude),
                "cod_collected": command.cod_collected,
                "cod_amount": command.cod_amount,
                "payment_method": command.payment_method,
                "receipt_number": command.receipt_number,
            },
            performed_by=command.performed_by,
        )
        repo.add(order)
        return order

    @handle(RecordCODPayment)
    def record_cod_payment(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.record_cod_payment(
            command.item_id,
            {
                "amount": command.amount,
                "payment_method": command.payment_method,
                "receipt_number": command.receipt_number,
            },
            performed_by=command.performed_by,
        )
        repo.add(order)
        return order

    @handle(RecordFailedDelivery)
    def record_failed_delivery(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.record_failed_delivery(
            command.item_id,
            reason=command.reason,
            performed_by=command.performed_by,
            location=location_from(command.longitude, command.latitude),
        )
        repo.add(order)
        return order

    @handle(RecordItemReturn)
    def record_item_return(self, command):
        repo = current_domain.repository_for(DeliveryOrder)
        order = repo.get(command.order_id)
        order.record_item_return(command.item_id, reason=command.reason, performed_by=command.performed_by)
        repo.add(order)
        return order
