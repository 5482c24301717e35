"""Shared BDD fixtures and step definitions for the Delivery domain."""

from datetime import date

import pytest
from protean.exceptions import InvalidOperationError, ValidationError
from pytest_bdd import given, parsers, then

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.delivery_order.events import (
    CODPaymentRecorded,
    DeliveryAttemptFailed,
    DeliveryItemReturned,
    DeliveryOrderAssigned,
    DeliveryOrderCancelled,
    DeliveryOrderCompleted,
    DeliveryOrderFailed,
    DeliveryOrderReopened,
    DeliveryStarted,
    ProofOfDeliveryRecorded,
    RouteOptimized,
)
from delivery.errors import ConcurrentUpdateError, InvalidTransitionError, PreconditionFailedError

_DELIVERY_EVENT_CLASSES = {
    "DeliveryOrderAssigned": DeliveryOrderAssigned,
    "DeliveryStarted": DeliveryStarted,
    "ProofOfDeliveryRecorded": ProofOfDeliveryRecorded,
    "CODPaymentRecorded": CODPaymentRecorded,
    "DeliveryAttemptFailed": DeliveryAttemptFailed,
    "DeliveryItemReturned": DeliveryItemReturned,
    "DeliveryOrderCompleted": DeliveryOrderCompleted,
    "DeliveryOrderCancelled": DeliveryOrderCancelled,
    "DeliveryOrderFailed": DeliveryOrderFailed,
    "DeliveryOrderReopened": DeliveryOrderReopened,
    "RouteOptimized": RouteOptimized,
}

_ERROR_CLASSES = {
    "invalid transition": InvalidTransitionError,
    "precondition failed": PreconditionFailedError,
    "conflict": ConcurrentUpdateError,
    "validation": ValidationError,
}

_DEFAULT_ITEMS = [
    {
        "shipment_order_ref": "so-1",
        "waybill_number": "WB-001",
        "receiver_name": "Budi Santoso",
        "receiver_address": "Jl. Merdeka 1, Bandung",
        "receiver_phone": "0811000001",
        "receiver_location": {"longitude": 107.6098, "latitude": -6.9147},
    },
    {
        "shipment_order_ref": "so-2",
        "waybill_number": "WB-COD",
        "receiver_name": "Sari Wijaya",
        "receiver_address": "Jl. Asia Afrika 8, Bandung",
        "receiver_phone": "0811000002",
        "receiver_location": {"longitude": 107.6105, "latitude": -6.9218},
        "payment_type": "COD",
        "cod_amount": 250000.0,
    },
]


def _new_order(items=None):
    return DeliveryOrder.create(
        order_number="SM250115BR0001",
        branch_id="branch-br",
        branch_code="BR",
        number_date="250115",
        number_sequence=1,
        scheduled_date=date(2025, 1, 15),
        start_location={"longitude": 107.6191, "latitude": -6.9175, "address": "Branch BR"},
        items_data=items or _DEFAULT_ITEMS,
        created_by="dispatcher",
    )


def _item_id(order, waybill):
    return next(str(i.id) for i in order.items if i.waybill_number == waybill)


@pytest.fixture()
def error():
    """Container for captured domain errors."""
    return {"exc": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a pending delivery order", target_fixture="order")
def pending_order():
    order = _new_order()
    order._events.clear()
    return order


@given("an assigned delivery order", target_fixture="order")
def assigned_order():
    order = _new_order()
    order.assign("vehicle-1", "driver-1", "dispatcher")
    order._events.clear()
    return order


@given("a delivery order in progress", target_fixture="order")
def in_progress_order():
    order = _new_order()
    order.assign("vehicle-1", "driver-1", "dispatcher")
    order.start("driver-1")
    order._events.clear()
    return order


@given("a cancelled delivery order", target_fixture="order")
def cancelled_order():
    order = _new_order()
    order.cancel("Vehicle unavailable", "dispatcher")
    order._events.clear()
    return order


@given("a completed delivery order", target_fixture="order")
def completed_order():
    order = _new_order()
    order.assign("vehicle-1", "driver-1", "dispatcher")
    order.start("driver-1")
    for item in order.items:
        order.record_proof_of_delivery(
            str(item.id),
            {
                "delivered_to": item.receiver_name,
                "signature_ref": "sig",
                "cod_collected": item.payment_type == "COD",
                "payment_method": "cash",
            },
            "driver-1",
        )
    order.complete("driver-1")
    order._events.clear()
    return order


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the delivery order status is "{status}"'))
def order_status_is(order, status):
    assert order.status == status


@then(parsers.cfparse('item "{waybill}" is "{status}"'))
def item_status_is(order, waybill, status):
    assert order.find_item(_item_id(order, waybill)).status == status


@then(parsers.cfparse("a {event_type} event is raised"))
def event_raised(order, event_type):
    event_cls = _DELIVERY_EVENT_CLASSES[event_type]
    assert any(
        isinstance(e, event_cls) for e in order._events
    ), f"No {event_type} event found. Events: {[type(e).__name__ for e in order._events]}"


@then(parsers.cfparse("the action is rejected as {kind}"))
def action_rejected(error, kind):
    assert error["exc"] is not None, "Expected the action to be rejected"
    assert isinstance(error["exc"], _ERROR_CLASSES[kind])


@then("no event is raised")
def no_event_raised(order):
    assert order._events == []
