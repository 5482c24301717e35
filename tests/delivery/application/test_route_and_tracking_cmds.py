"""Application tests for route optimization, stop arrival and tracking."""

import json
import math
from datetime import date

import pytest
from protean import current_domain

from delivery.delivery_order.assignment import AssignDeliveryOrder
from delivery.delivery_order.creation import CreateDeliveryOrder
from delivery.delivery_order.delivery_order import DeliveryOrder, StopStatus
from delivery.delivery_order.execution import StartDelivery
from delivery.delivery_order.routing import MarkStopArrived, OptimizeRoute
from delivery.delivery_order.tracking import UpdateTrackingLocation
from delivery.errors import InvalidTransitionError, PreconditionFailedError
from delivery.routing.geo import EARTH_RADIUS_KM

ONE_DEGREE_KM = EARTH_RADIUS_KM * math.pi / 180


def _item(waybill, latitude):
    return {
        "shipment_order_ref": f"so-{waybill}",
        "waybill_number": waybill,
        "receiver_name": "Receiver",
        "receiver_address": f"Address of {waybill}",
        "receiver_phone": "0811000000",
        "receiver_location": {"longitude": 0.0, "latitude": latitude},
    }


def _create_order():
    command = CreateDeliveryOrder(
        branch_id="branch-br",
        branch_code="BR",
        scheduled_date=date(2025, 1, 15),
        start_longitude=0.0,
        start_latitude=0.0,
        items=json.dumps([_item("WB-A", 2.0), _item("WB-B", 1.0), _item("WB-C", 3.0)]),
        performed_by="dispatcher",
    )
    return current_domain.process(command, asynchronous=False)


def _get(order_id):
    return current_domain.repository_for(DeliveryOrder).get(order_id)


def _optimize(order_id):
    current_domain.process(OptimizeRoute(order_id=order_id, performed_by="dispatcher"), asynchronous=False)


def _start(order_id):
    current_domain.process(
        AssignDeliveryOrder(order_id=order_id, vehicle_id="vehicle-1", driver_id="driver-1", performed_by="dispatcher"),
        asynchronous=False,
    )
    current_domain.process(StartDelivery(order_id=order_id, performed_by="driver-1"), asynchronous=False)


class TestOptimizeRoute:
    def test_stops_follow_nearest_neighbour(self):
        order_id = _create_order()
        _optimize(order_id)

        order = _get(order_id)
        assert [s.waybill_number for s in order.ordered_stops()] == ["WB-B", "WB-A", "WB-C"]
        assert [s.sequence for s in order.ordered_stops()] == [1, 2, 3]
        assert order.route.optimized is True
        assert order.route.total_distance_km == pytest.approx(3 * ONE_DEGREE_KM)

    def test_reoptimizing_replaces_the_stops(self):
        order_id = _create_order()
        _optimize(order_id)
        _optimize(order_id)
        assert len(_get(order_id).route_stops) == 3

    def test_optimizing_a_running_order_is_refused(self):
        order_id = _create_order()
        _start(order_id)
        with pytest.raises(PreconditionFailedError):
            _optimize(order_id)


class TestStopArrival:
    def test_arrival_is_recorded(self, frozen_clock):
        order_id = _create_order()
        _optimize(order_id)
        _start(order_id)
        stop_id = str(_get(order_id).ordered_stops()[0].id)

        current_domain.process(
            MarkStopArrived(order_id=order_id, stop_id=stop_id, performed_by="driver-1"), asynchronous=False
        )

        stop = _get(order_id).ordered_stops()[0]
        assert stop.status == StopStatus.ARRIVED.value
        assert stop.actual_arrival == frozen_clock

    def test_arriving_twice_is_an_invalid_transition(self):
        order_id = _create_order()
        _optimize(order_id)
        _start(order_id)
        stop_id = str(_get(order_id).ordered_stops()[0].id)
        command = MarkStopArrived(order_id=order_id, stop_id=stop_id, performed_by="driver-1")
        current_domain.process(command, asynchronous=False)
        with pytest.raises(InvalidTransitionError):
            current_domain.process(command, asynchronous=False)


class TestTracking:
    def test_location_is_recorded_and_etas_move(self):
        order_id = _create_order()
        _optimize(order_id)
        _start(order_id)
        before = {s.waybill_number: s.estimated_arrival for s in _get(order_id).ordered_stops()}

        current_domain.process(
            UpdateTrackingLocation(
                order_id=order_id,
                longitude=0.0,
                latitude=0.9,
                speed=60.0,
                performed_by="driver-1",
            ),
            asynchronous=False,
        )

        order = _get(order_id)
        assert any(t.position.latitude == 0.9 for t in order.tracking_locations)
        after = {s.waybill_number: s.estimated_arrival for s in order.ordered_stops()}
        assert [s.waybill_number for s in order.ordered_stops()] == ["WB-B", "WB-A", "WB-C"]
        assert all(after[w] < before[w] for w in before)

    def test_tracking_a_pending_order_keeps_etas(self):
        order_id = _create_order()
        _optimize(order_id)
        before = [s.estimated_arrival for s in _get(order_id).ordered_stops()]

        current_domain.process(
            UpdateTrackingLocation(order_id=order_id, longitude=0.0, latitude=0.5, performed_by="driver-1"),
            asynchronous=False,
        )

        assert [s.estimated_arrival for s in _get(order_id).ordered_stops()] == before
