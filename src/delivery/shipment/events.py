"""Transit shipment domain events."""

from protean.fields import DateTime, Identifier, String

from delivery.domain import delivery


@delivery.event(part_of="TransitShipment")
class TransitShipmentRegistered:
    """An inter-branch shipment started being tracked."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    shipment_number = String(required=True)
    origin_branch_id = Identifier(required=True)
    destination_branch_id = Identifier(required=True)
    estimated_arrival = DateTime()
    registered_at = DateTime(required=True)


@delivery.event(part_of="TransitShipment")
class ShipmentETAUpdated:
    """The expected arrival time of a transit shipment was revised."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    previous_eta = DateTime()
    new_eta = DateTime(required=True)
    reason = String(max_length=500)
    performed_by = String(required=True)
    updated_at = DateTime(required=True)
