"""Delivery order domain events: immutable facts about delivery order changes.

All events are past tense, versioned, and carry enough data for the board
and COD reconciliation projectors.
"""

from protean.fields import Boolean, Date, DateTime, Float, Identifier, Integer, String, Text

from delivery.domain import delivery


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderCreated:
    """A delivery order was created for a branch."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    branch_id = Identifier(required=True)
    branch_code = String(required=True)
    scheduled_date = Date()
    item_count = Integer(required=True)
    total_cod_amount = Float(default=0.0)
    created_by = String(required=True)
    created_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryItemAdded:
    """An item was added to a delivery order after creation."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    waybill_number = String(required=True)
    payment_type = String(required=True)
    cod_amount = Float(default=0.0)
    added_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryItemRemoved:
    """An item was taken off a delivery order."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    waybill_number = String(required=True)
    cod_amount = Float(default=0.0)
    removed_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderAssigned:
    """A vehicle and crew were assigned to a delivery order."""

    __version__ = 1

    order_id = Identifier(required=True)
    vehicle_id = Identifier(required=True)
    driver_id = Identifier(required=True)
    helper_id = Identifier()
    item_count = Integer(required=True)
    assigned_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderUpdated:
    """Schedule, priority, notes or locations of a delivery order were edited."""

    __version__ = 1

    order_id = Identifier(required=True)
    changed_fields = Text(required=True)  # JSON list of field names
    scheduled_date = Date()
    priority = String()
    route_invalidated = Boolean(default=False)
    updated_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryStarted:
    """The crew left the branch and the order is in progress."""

    __version__ = 1

    order_id = Identifier(required=True)
    driver_id = Identifier()
    longitude = Float()
    latitude = Float()
    started_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderCompleted:
    """Every item reached a terminal status and the order was closed."""

    __version__ = 1

    order_id = Identifier(required=True)
    status = String(required=True)  # completed or partially_completed
    delivered_count = Integer(required=True)
    failed_count = Integer(required=True)
    returned_count = Integer(required=True)
    actual_duration_min = Integer()
    completed_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderCancelled:
    """A delivery order was cancelled before it started."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    cancelled_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderFailed:
    """A delivery run was abandoned while in progress."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    failed_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryOrderReopened:
    """A failed or cancelled delivery order was put back to pending."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reopened_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class RouteOptimized:
    """Stops were sequenced and the route plan recomputed."""

    __version__ = 1

    order_id = Identifier(required=True)
    stop_count = Integer(required=True)
    total_distance_km = Float(required=True)
    estimated_duration_min = Integer(required=True)
    unrouted_waybills = Text()  # JSON list of waybill numbers without a location
    optimized_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class ProofOfDeliveryRecorded:
    """An item was handed over and proof of delivery captured."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    waybill_number = String(required=True)
    delivered_to = String(required=True)
    cod_collected = Boolean(default=False)
    cod_amount = Float(default=0.0)
    delivered_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class CODPaymentRecorded:
    """Cash-on-delivery payment details were recorded against a delivered item."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    amount = Float(required=True)
    previous_amount = Float(default=0.0)  # amount already counted as collected
    payment_method = String(required=True)
    receipt_number = String()
    collected_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryAttemptFailed:
    """An item could not be delivered."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    waybill_number = String(required=True)
    reason = String(required=True, max_length=500)
    failed_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryItemReturned:
    """An item was returned to the branch undelivered."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    waybill_number = String(required=True)
    reason = String(required=True, max_length=500)
    returned_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class StopArrived:
    """The crew arrived at a route stop."""

    __version__ = 1

    order_id = Identifier(required=True)
    stop_id = Identifier(required=True)
    sequence = Integer(required=True)
    arrived_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class TrackingLocationRecorded:
    """A live position was observed for the delivery vehicle."""

    __version__ = 1

    order_id = Identifier(required=True)
    longitude = Float(required=True)
    latitude = Float(required=True)
    speed = Float()
    reprojected_stops = Integer(default=0)
    recorded_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryIssueReported:
    """An operational issue was reported during a delivery run."""

    __version__ = 1

    order_id = Identifier(required=True)
    issue_id = Identifier(required=True)
    kind = String(required=True)
    severity = String(required=True)
    description = Text(required=True)
    reported_at = DateTime(required=True)


@delivery.event(part_of="DeliveryOrder")
class DeliveryIssueResolved:
    """A reported issue was resolved."""

    __version__ = 1

    order_id = Identifier(required=True)
    issue_id = Identifier(required=True)
    resolution = Text(required=True)
    resolved_at = DateTime(required=True)
