"""TransitShipment aggregate (CQRS): inter-branch shipments in transit.

Tracks the expected arrival of a shipment travelling between branches. Every
ETA revision is kept, with the previous value, the reason and who changed it.
"""

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, String

from delivery import clock
from delivery.domain import delivery
from delivery.shipment.events import ShipmentETAUpdated, TransitShipmentRegistered


@delivery.entity(part_of="TransitShipment")
class EtaRevision:
    """A recorded change of the expected arrival time."""

    previous_eta = DateTime()
    new_eta = DateTime(required=True)
    reason = String(max_length=500)
    performed_by = String(required=True, max_length=100)
    revised_at = DateTime(required=True)


@delivery.aggregate
class TransitShipment:
    shipment_number = String(required=True, max_length=50, unique=True)
    origin_branch_id = Identifier(required=True)
    destination_branch_id = Identifier(required=True)
    estimated_arrival = DateTime()
    eta_revisions = HasMany(EtaRevision)
    created_by = String(max_length=100)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(
        cls,
        shipment_number: str,
        origin_branch_id: str,
        destination_branch_id: str,
        created_by: str,
        estimated_arrival=None,
    ):
        if origin_branch_id == destination_branch_id:
            raise ValidationError({"destination_branch_id": ["Destination must differ from origin"]})

        now = clock.now()
        shipment = cls(
            shipment_number=shipment_number,
            origin_branch_id=origin_branch_id,
            destination_branch_id=destination_branch_id,
            estimated_arrival=estimated_arrival,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        shipment.raise_(
            TransitShipmentRegistered(
                shipment_id=str(shipment.id),
                shipment_number=shipment_number,
                origin_branch_id=origin_branch_id,
                destination_branch_id=destination_branch_id,
                estimated_arrival=estimated_arrival,
                registered_at=now,
            )
        )
        return shipment

    def update_eta(self, new_eta, performed_by: str, reason: str | None = None) -> None:
        """Replace the expected arrival and keep the previous value in the revision log."""
        if new_eta is None:
            raise ValidationError({"new_eta": ["New ETA is required"]})

        now = clock.now()
        previous = self.estimated_arrival
        self.add_eta_revisions(
            EtaRevision(
                previous_eta=previous,
                new_eta=new_eta,
                reason=reason,
                performed_by=performed_by,
                revised_at=now,
            )
        )
        self.estimated_arrival = new_eta
        self.updated_at = now
        self.raise_(
            ShipmentETAUpdated(
                shipment_id=str(self.id),
                previous_eta=previous,
                new_eta=new_eta,
                reason=reason,
                performed_by=performed_by,
                updated_at=now,
            )
        )
