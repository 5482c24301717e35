"""Application tests for transit shipment registration and ETA updates."""

from datetime import UTC, datetime

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from delivery.delivery_order.locking import process_exclusively
from delivery.references import get_resolver
from delivery.shipment.eta import RegisterTransitShipment, UpdateShipmentETA
from delivery.shipment.shipment import TransitShipment

ETA = datetime(2025, 1, 16, 10, 0, tzinfo=UTC)


def _register(**overrides):
    fields = {
        "shipment_number": "TS-0001",
        "origin_branch_id": "branch-jk",
        "destination_branch_id": "branch-bd",
        "estimated_arrival": ETA,
        "performed_by": "planner",
    }
    fields.update(overrides)
    return current_domain.process(RegisterTransitShipment(**fields), asynchronous=False)


class TestRegisterTransitShipment:
    def test_register(self):
        shipment = current_domain.repository_for(TransitShipment).get(_register())
        assert shipment.shipment_number == "TS-0001"
        assert shipment.estimated_arrival == ETA

    def test_unknown_destination_branch(self):
        get_resolver().mark_unknown("branch", "branch-bd")
        with pytest.raises(ValidationError):
            _register()


class TestUpdateShipmentETA:
    def test_update_keeps_revision_history(self):
        shipment_id = _register()
        new_eta = datetime(2025, 1, 16, 15, 30, tzinfo=UTC)
        process_exclusively(
            UpdateShipmentETA(
                shipment_id=shipment_id,
                new_eta=new_eta,
                reason="Ferry delayed",
                performed_by="planner",
            ),
            shipment_id,
        )

        shipment = current_domain.repository_for(TransitShipment).get(shipment_id)
        assert shipment.estimated_arrival == new_eta
        assert len(shipment.eta_revisions) == 1
        assert shipment.eta_revisions[0].previous_eta == ETA
        assert shipment.eta_revisions[0].reason == "Ferry delayed"

    def test_unknown_shipment(self):
        with pytest.raises(ObjectNotFoundError):
            current_domain.process(
                UpdateShipmentETA(shipment_id="missing", new_eta=ETA, performed_by="planner"),
                asynchronous=False,
            )
