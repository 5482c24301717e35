"""Application tests for item outcome commands: POD, COD payment, failures and returns."""

import json
from datetime import date

import pytest
from protean import current_domain

from delivery.delivery_order.assignment import AssignDeliveryOrder
from delivery.delivery_order.creation import CreateDeliveryOrder
from delivery.delivery_order.delivery_order import DeliveryItemStatus, DeliveryOrder, DeliveryOrderStatus
from delivery.delivery_order.execution import CompleteDelivery, StartDelivery
from delivery.delivery_order.proof_of_delivery import (
    RecordCODPayment,
    RecordFailedDelivery,
    RecordItemReturn,
    RecordProofOfDelivery,
)
from delivery.errors import InvalidTransitionError, PreconditionFailedError


def _started_order():
    command = CreateDeliveryOrder(
        branch_id="branch-br",
        branch_code="BR",
        scheduled_date=date(2025, 1, 15),
        start_longitude=0.0,
        start_latitude=0.0,
        items=json.dumps(
            [
                {
                    "shipment_order_ref": "so-1",
                    "waybill_number": "WB-CASH",
                    "receiver_name": "Budi",
                    "receiver_address": "Jl. Merdeka 1",
                    "receiver_phone": "0811000001",
                },
                {
                    "shipment_order_ref": "so-2",
                    "waybill_number": "WB-COD",
                    "receiver_name": "Sari",
                    "receiver_address": "Jl. Sudirman 2",
                    "receiver_phone": "0811000002",
                    "payment_type": "COD",
                    "cod_amount": 150000.0,
                },
            ]
        ),
        performed_by="dispatcher",
    )
    order_id = current_domain.process(command, asynchronous=False)
    current_domain.process(
        AssignDeliveryOrder(order_id=order_id, vehicle_id="vehicle-1", driver_id="driver-1", performed_by="dispatcher"),
        asynchronous=False,
    )
    current_domain.process(StartDelivery(order_id=order_id, performed_by="driver-1"), asynchronous=False)
    return order_id


def _get(order_id):
    return current_domain.repository_for(DeliveryOrder).get(order_id)


def _item_id(order_id, waybill):
    return next(str(i.id) for i in _get(order_id).items if i.waybill_number == waybill)


def _pod(order_id, item_id, **overrides):
    fields = {
        "order_id": order_id,
        "item_id": item_id,
        "delivered_to": "Receiver",
        "signature_ref": "sig-1",
        "performed_by": "driver-1",
    }
    fields.update(overrides)
    current_domain.process(RecordProofOfDelivery(**fields), asynchronous=False)


class TestProofOfDelivery:
    def test_item_is_delivered(self):
        order_id = _started_order()
        item_id = _item_id(order_id, "WB-CASH")
        _pod(order_id, item_id, photos=json.dumps(["photo-1.jpg"]), longitude=0.01, latitude=0.02)

        item = _get(order_id).find_item(item_id)
        assert item.status == DeliveryItemStatus.DELIVERED.value
        assert json.loads(item.proof_of_delivery.photos) == ["photo-1.jpg"]
        assert item.proof_of_delivery.latitude == 0.02

    def test_cod_collected_with_pod(self):
        order_id = _started_order()
        _pod(order_id, _item_id(order_id, "WB-COD"), cod_collected=True, payment_method="cash")

        assert _get(order_id).summary.cod_collected_amount == 150000.0

    def test_pod_twice_is_an_invalid_transition(self):
        order_id = _started_order()
        item_id = _item_id(order_id, "WB-CASH")
        _pod(order_id, item_id)
        with pytest.raises(InvalidTransitionError):
            _pod(order_id, item_id)


class TestCodPayment:
    def test_payment_after_pod(self):
        order_id = _started_order()
        item_id = _item_id(order_id, "WB-COD")
        _pod(order_id, item_id)
        current_domain.process(
            RecordCODPayment(
                order_id=order_id,
                item_id=item_id,
                payment_method="transfer",
                receipt_number="RCP-1",
                performed_by="driver-1",
            ),
            asynchronous=False,
        )

        order = _get(order_id)
        pod = order.find_item(item_id).proof_of_delivery
        assert pod.cod_collected is True
        assert pod.cod_amount == 150000.0
        assert pod.receipt_number == "RCP-1"
        assert order.summary.cod_collected_amount == 150000.0

    def test_payment_before_pod_is_refused(self):
        order_id = _started_order()
        item_id = _item_id(order_id, "WB-COD")
        with pytest.raises(PreconditionFailedError):
            current_domain.process(
                RecordCODPayment(order_id=order_id, item_id=item_id, payment_method="cash", performed_by="driver-1"),
                asynchronous=False,
            )
        assert _get(order_id).find_item(item_id).proof_of_delivery is None


class TestFailuresAndReturns:
    def test_returned_item_leads_to_partial_completion(self):
        order_id = _started_order()
        cod_id = _item_id(order_id, "WB-COD")

        _pod(order_id, _item_id(order_id, "WB-CASH"))
        current_domain.process(
            RecordItemReturn(order_id=order_id, item_id=cod_id, reason="Refused by receiver", performed_by="driver-1"),
            asynchronous=False,
        )
        current_domain.process(CompleteDelivery(order_id=order_id, performed_by="driver-1"), asynchronous=False)

        order = _get(order_id)
        assert order.find_item(cod_id).return_reason == "Refused by receiver"
        assert order.status == DeliveryOrderStatus.PARTIALLY_COMPLETED.value
        assert order.summary.returned_count == 1
        assert order.summary.cod_collected_amount == 0.0

    def test_failed_item_cannot_be_returned_afterwards(self):
        order_id = _started_order()
        cod_id = _item_id(order_id, "WB-COD")
        current_domain.process(
            RecordFailedDelivery(order_id=order_id, item_id=cod_id, reason="Receiver absent", performed_by="driver-1"),
            asynchronous=False,
        )

        item = _get(order_id).find_item(cod_id)
        assert item.status == DeliveryItemStatus.FAILED.value
        assert item.failure_reason == "Receiver absent"
        with pytest.raises(InvalidTransitionError):
            current_domain.process(
                RecordItemReturn(order_id=order_id, item_id=cod_id, reason="Back to branch", performed_by="driver-1"),
                asynchronous=False,
            )
