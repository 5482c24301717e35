"""Transit shipment commands: registration and ETA updates."""

from protean import handle
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.references import ensure_references
from delivery.shipment.shipment import TransitShipment


@delivery.command(part_of="TransitShipment")
class RegisterTransitShipment:
    """Start tracking an inter-branch shipment."""

    shipment_number = String(required=True, max_length=50)
    origin_branch_id = Identifier(required=True)
    destination_branch_id = Identifier(required=True)
    estimated_arrival = DateTime()
    performed_by = String(required=True, max_length=100)


@delivery.command(part_of="TransitShipment")
class UpdateShipmentETA:
    """Revise the expected arrival of a transit shipment."""

    shipment_id = Identifier(required=True)
    new_eta = DateTime(required=True)
    reason = String(max_length=500)
    performed_by = String(required=True, max_length=100)


@delivery.command_handler(part_of=TransitShipment)
class TransitShipmentHandler:
    @handle(RegisterTransitShipment)
    def register_transit_shipment(self, command):
        ensure_references(branch=[command.origin_branch_id, command.destination_branch_id])
        shipment = TransitShipment.register(
            shipment_number=command.shipment_number,
            origin_branch_id=command.origin_branch_id,
            destination_branch_id=command.destination_branch_id,
            estimated_arrival=command.estimated_arrival,
            created_by=command.performed_by,
        )
        current_domain.repository_for(TransitShipment).add(shipment)
        return str(shipment.id)

    @handle(UpdateShipmentETA)
    def update_shipment_eta(self, command):
        repo = current_domain.repository_for(TransitShipment)
        shipment = repo.get(command.shipment_id)
        shipment.update_eta(command.new_eta, performed_by=command.performed_by, reason=command.reason)
        repo.add(shipment)
        return shipment
