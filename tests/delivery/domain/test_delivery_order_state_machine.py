"""Tests for the DeliveryOrder state machine: legal and illegal transitions."""

from datetime import date

import pytest
from protean.exceptions import ValidationError

from delivery.delivery_order.delivery_order import (
    DeliveryItemStatus,
    DeliveryOrder,
    DeliveryOrderStatus,
)
from delivery.errors import InvalidTransitionError, PreconditionFailedError


def _make_items():
    return [
        {
            "shipment_order_ref": "so-1",
            "waybill_number": "WB-001",
            "receiver_name": "Budi",
            "receiver_address": "Jl. Merdeka 1",
            "receiver_phone": "0811000001",
            "receiver_location": {"longitude": 0.0, "latitude": 1.0},
        },
        {
            "shipment_order_ref": "so-2",
            "waybill_number": "WB-002",
            "receiver_name": "Sari",
            "receiver_address": "Jl. Sudirman 2",
            "receiver_phone": "0811000002",
            "receiver_location": {"longitude": 0.0, "latitude": 2.0},
        },
    ]


def _make_order():
    return DeliveryOrder.create(
        order_number="SM250115BR0001",
        branch_id="branch-br",
        branch_code="BR",
        number_date="250115",
        number_sequence=1,
        scheduled_date=date(2025, 1, 15),
        start_location={"longitude": 0.0, "latitude": 0.0, "address": "Depot BR"},
        items_data=_make_items(),
        created_by="dispatcher",
    )


def _pod():
    return {"delivered_to": "Budi", "signature_ref": "sig-001"}


def _order_in(status: DeliveryOrderStatus):
    order = _make_order()
    if status == DeliveryOrderStatus.PENDING:
        return order
    if status == DeliveryOrderStatus.CANCELLED:
        order.cancel("Customer asked to hold", "dispatcher")
        return order

    order.assign("vehicle-1", "driver-1", "dispatcher")
    if status == DeliveryOrderStatus.ASSIGNED:
        return order

    order.start("driver-1")
    if status == DeliveryOrderStatus.IN_PROGRESS:
        return order
    if status == DeliveryOrderStatus.FAILED:
        order.fail("Vehicle breakdown", "driver-1")
        return order

    first, second = order.items
    order.record_proof_of_delivery(str(first.id), _pod(), "driver-1")
    if status == DeliveryOrderStatus.COMPLETED:
        order.record_proof_of_delivery(str(second.id), _pod(), "driver-1")
    else:
        order.record_failed_delivery(str(second.id), "Receiver not home", "driver-1")
    order.complete("driver-1")
    return order


_OPERATIONS = {
    "assign": lambda o: o.assign("vehicle-2", "driver-2", "dispatcher"),
    "start": lambda o: o.start("driver-1"),
    "complete": lambda o: o.complete("driver-1"),
    "cancel": lambda o: o.cancel("No longer needed", "dispatcher"),
    "fail": lambda o: o.fail("Road closed", "driver-1"),
    "reopen": lambda o: o.reopen("dispatcher"),
}

_ILLEGAL = [
    (DeliveryOrderStatus.PENDING, "start"),
    (DeliveryOrderStatus.PENDING, "complete"),
    (DeliveryOrderStatus.PENDING, "fail"),
    (DeliveryOrderStatus.PENDING, "reopen"),
    (DeliveryOrderStatus.ASSIGNED, "assign"),
    (DeliveryOrderStatus.ASSIGNED, "complete"),
    (DeliveryOrderStatus.ASSIGNED, "fail"),
    (DeliveryOrderStatus.ASSIGNED, "reopen"),
    (DeliveryOrderStatus.IN_PROGRESS, "assign"),
    (DeliveryOrderStatus.IN_PROGRESS, "start"),
    (DeliveryOrderStatus.IN_PROGRESS, "cancel"),
    (DeliveryOrderStatus.IN_PROGRESS, "reopen"),
    (DeliveryOrderStatus.CANCELLED, "assign"),
    (DeliveryOrderStatus.CANCELLED, "start"),
    (DeliveryOrderStatus.CANCELLED, "complete"),
    (DeliveryOrderStatus.CANCELLED, "cancel"),
    (DeliveryOrderStatus.CANCELLED, "fail"),
    (DeliveryOrderStatus.FAILED, "assign"),
    (DeliveryOrderStatus.FAILED, "start"),
    (DeliveryOrderStatus.FAILED, "complete"),
    (DeliveryOrderStatus.FAILED, "cancel"),
    (DeliveryOrderStatus.FAILED, "fail"),
] + [
    (terminal, operation)
    for terminal in (DeliveryOrderStatus.COMPLETED, DeliveryOrderStatus.PARTIALLY_COMPLETED)
    for operation in _OPERATIONS
]


def _snapshot(order):
    return (
        order.status,
        len(order.status_history),
        len(order.item_status_history),
        len(order.activity_log),
        [i.status for i in order.items],
        len(order._events),
    )


class TestValidTransitions:
    def test_created_order_is_pending(self):
        order = _make_order()
        assert order.status == DeliveryOrderStatus.PENDING.value
        assert all(i.status == DeliveryItemStatus.PENDING.value for i in order.items)

    def test_pending_to_assigned(self):
        order = _order_in(DeliveryOrderStatus.ASSIGNED)
        assert order.status == DeliveryOrderStatus.ASSIGNED.value
        assert order.vehicle_id == "vehicle-1"
        assert order.driver_id == "driver-1"

    def test_assign_cascades_to_pending_items(self):
        order = _order_in(DeliveryOrderStatus.ASSIGNED)
        assert all(i.status == DeliveryItemStatus.ASSIGNED.value for i in order.items)

    def test_assigned_to_in_progress(self, frozen_clock):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        assert order.status == DeliveryOrderStatus.IN_PROGRESS.value
        assert order.route.actual_start == frozen_clock

    def test_start_puts_items_in_transit(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        assert all(i.status == DeliveryItemStatus.IN_TRANSIT.value for i in order.items)

    def test_in_progress_to_completed(self, frozen_clock):
        order = _order_in(DeliveryOrderStatus.COMPLETED)
        assert order.status == DeliveryOrderStatus.COMPLETED.value
        assert order.route.actual_end == frozen_clock

    def test_delivered_and_failed_items_complete_partially(self):
        order = _order_in(DeliveryOrderStatus.PARTIALLY_COMPLETED)
        assert order.status == DeliveryOrderStatus.PARTIALLY_COMPLETED.value

    def test_pending_to_cancelled(self):
        order = _order_in(DeliveryOrderStatus.CANCELLED)
        assert order.status == DeliveryOrderStatus.CANCELLED.value
        assert order.cancellation_reason == "Customer asked to hold"

    def test_assigned_to_cancelled(self):
        order = _order_in(DeliveryOrderStatus.ASSIGNED)
        order.cancel("Driver unavailable", "dispatcher")
        assert order.status == DeliveryOrderStatus.CANCELLED.value

    def test_in_progress_to_failed(self):
        order = _order_in(DeliveryOrderStatus.FAILED)
        assert order.status == DeliveryOrderStatus.FAILED.value
        assert order.failure_reason == "Vehicle breakdown"

    @pytest.mark.parametrize("status", [DeliveryOrderStatus.FAILED, DeliveryOrderStatus.CANCELLED])
    def test_reopen_returns_to_pending(self, status):
        order = _order_in(status)
        order.reopen("dispatcher")
        assert order.status == DeliveryOrderStatus.PENDING.value

    def test_reopen_leaves_items_untouched(self):
        order = _order_in(DeliveryOrderStatus.FAILED)
        before = [i.status for i in order.items]
        order.reopen("dispatcher")
        assert [i.status for i in order.items] == before

    def test_reopened_order_can_be_assigned_again(self):
        order = _order_in(DeliveryOrderStatus.CANCELLED)
        order.reopen("dispatcher")
        order.assign("vehicle-9", "driver-9", "dispatcher")
        assert order.status == DeliveryOrderStatus.ASSIGNED.value
        assert order.driver_id == "driver-9"


class TestIllegalTransitions:
    def test_start_from_pending_is_rejected(self):
        order = _make_order()
        with pytest.raises(InvalidTransitionError) as exc:
            order.start("driver-1")
        assert exc.value.current_status == "pending"
        assert exc.value.attempted_status == "in_progress"

    def test_invalid_transition_is_a_validation_error(self):
        order = _make_order()
        with pytest.raises(ValidationError) as exc:
            order.start("driver-1")
        assert "Cannot transition from pending to in_progress" in str(exc.value.messages)

    @pytest.mark.parametrize(
        "status,operation",
        _ILLEGAL,
        ids=[f"{s.value}-{op}" for s, op in _ILLEGAL],
    )
    def test_rejection_leaves_order_unchanged(self, status, operation):
        order = _order_in(status)
        before = _snapshot(order)

        with pytest.raises(InvalidTransitionError):
            _OPERATIONS[operation](order)

        assert _snapshot(order) == before

    def test_rejection_is_repeatable(self):
        order = _make_order()
        for _ in range(3):
            with pytest.raises(InvalidTransitionError):
                order.complete("driver-1")
        assert order.status == DeliveryOrderStatus.PENDING.value
        assert len(order.status_history) == 1


class TestPreconditions:
    def test_complete_with_open_items_is_rejected(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        order.record_proof_of_delivery(str(order.items[0].id), _pod(), "driver-1")

        with pytest.raises(PreconditionFailedError) as exc:
            order.complete("driver-1")
        assert "1 item(s)" in str(exc.value.messages)
        assert order.status == DeliveryOrderStatus.IN_PROGRESS.value

    def test_last_delivery_does_not_complete_the_order(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        for item in order.items:
            order.record_proof_of_delivery(str(item.id), _pod(), "driver-1")
        assert order.status == DeliveryOrderStatus.IN_PROGRESS.value

    def test_cancel_requires_reason(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.cancel("", "dispatcher")

    def test_fail_requires_reason(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        with pytest.raises(ValidationError):
            order.fail("", "driver-1")

    def test_assign_requires_vehicle_and_driver(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.assign("vehicle-1", "", "dispatcher")
        assert order.status == DeliveryOrderStatus.PENDING.value

    def test_assign_rejects_malformed_time(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.assign("vehicle-1", "driver-1", "dispatcher", scheduled_time="25:00")


class TestStatusHistory:
    def test_every_transition_is_appended(self):
        order = _order_in(DeliveryOrderStatus.COMPLETED)
        statuses = [h.status for h in order.status_history]
        assert statuses == ["pending", "assigned", "in_progress", "completed"]

    def test_history_records_actor_and_time(self, frozen_clock):
        order = _order_in(DeliveryOrderStatus.ASSIGNED)
        entry = order.status_history[-1]
        assert entry.performed_by == "dispatcher"
        assert entry.occurred_at == frozen_clock

    def test_start_records_start_location(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        entry = order.status_history[-1]
        assert entry.location.address == "Depot BR"

    def test_item_history_walks_every_step(self):
        order = _order_in(DeliveryOrderStatus.COMPLETED)
        history = order.history_for(str(order.items[0].id))
        assert [h.status for h in history] == ["pending", "assigned", "in_transit", "delivered"]

    def test_updated_by_tracks_last_actor(self):
        order = _order_in(DeliveryOrderStatus.IN_PROGRESS)
        assert order.updated_by == "driver-1"
