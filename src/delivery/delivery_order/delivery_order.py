"""DeliveryOrder aggregate (CQRS): the core of the delivery domain.

A delivery order is one vehicle and crew carrying a batch of shipment items.
It owns its items, route stops, status and item histories, tracking trail,
activity log and reported issues. Owned collections are flat lists keyed by
stable ids; item history refers back to its item by ``item_id``.

Order State Machine:
    PENDING → {ASSIGNED, CANCELLED}
    ASSIGNED → {IN_PROGRESS, CANCELLED}
    IN_PROGRESS → {COMPLETED, PARTIALLY_COMPLETED, FAILED}
    {FAILED, CANCELLED} → PENDING
    COMPLETED, PARTIALLY_COMPLETED are terminal

Item State Machine:
    PENDING → ASSIGNED → IN_TRANSIT → {DELIVERED, FAILED, RETURNED}

The summary is a fold over ``items`` and is recomputed at the end of every
mutation.
"""

import json
import re
from enum import Enum

from protean import invariant
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from delivery import clock
from delivery.delivery_order.events import (
    CODPaymentRecorded,
    DeliveryAttemptFailed,
    DeliveryIssueReported,
    DeliveryIssueResolved,
    DeliveryItemAdded,
    DeliveryItemRemoved,
    DeliveryItemReturned,
    DeliveryOrderAssigned,
    DeliveryOrderCancelled,
    DeliveryOrderCompleted,
    DeliveryOrderCreated,
    DeliveryOrderFailed,
    DeliveryOrderReopened,
    DeliveryOrderUpdated,
    DeliveryStarted,
    ProofOfDeliveryRecorded,
    RouteOptimized,
    StopArrived,
    TrackingLocationRecorded,
)
from delivery.domain import delivery
from delivery.errors import InvalidTransitionError, PreconditionFailedError
from delivery.routing.engine import RouteEngine, StopCandidate

_SCHEDULED_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class DeliveryOrderStatus(Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeliveryItemStatus(Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class StopStatus(Enum):
    PENDING = "pending"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class PaymentType(Enum):
    CASH = "CASH"
    COD = "COD"
    CAD = "CAD"


class CodPaymentMethod(Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    OTHER = "other"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ActivityKind(Enum):
    CREATED = "created"
    UPDATED = "updated"
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REOPENED = "reopened"
    ROUTE_OPTIMIZED = "route_optimized"
    POD_RECORDED = "pod_recorded"
    COD_COLLECTED = "cod_collected"
    DELIVERY_FAILED = "delivery_failed"
    ITEM_RETURNED = "item_returned"
    STOP_ARRIVED = "stop_arrived"
    ISSUE_REPORTED = "issue_reported"
    ISSUE_RESOLVED = "issue_resolved"


class IssueKind(Enum):
    VEHICLE = "vehicle"
    TRAFFIC = "traffic"
    WEATHER = "weather"
    CUSTOMER = "customer"
    OTHER = "other"


class IssueSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueStatus(Enum):
    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


_VALID_TRANSITIONS = {
    DeliveryOrderStatus.PENDING: {DeliveryOrderStatus.ASSIGNED, DeliveryOrderStatus.CANCELLED},
    DeliveryOrderStatus.ASSIGNED: {DeliveryOrderStatus.IN_PROGRESS, DeliveryOrderStatus.CANCELLED},
    DeliveryOrderStatus.IN_PROGRESS: {
        DeliveryOrderStatus.COMPLETED,
        DeliveryOrderStatus.PARTIALLY_COMPLETED,
        DeliveryOrderStatus.FAILED,
    },
    DeliveryOrderStatus.FAILED: {DeliveryOrderStatus.PENDING},
    DeliveryOrderStatus.CANCELLED: {DeliveryOrderStatus.PENDING},
    DeliveryOrderStatus.COMPLETED: set(),  # terminal
    DeliveryOrderStatus.PARTIALLY_COMPLETED: set(),  # terminal
}

_ITEM_TRANSITIONS = {
    DeliveryItemStatus.PENDING: {DeliveryItemStatus.ASSIGNED},
    DeliveryItemStatus.ASSIGNED: {DeliveryItemStatus.IN_TRANSIT},
    DeliveryItemStatus.IN_TRANSIT: {
        DeliveryItemStatus.DELIVERED,
        DeliveryItemStatus.FAILED,
        DeliveryItemStatus.RETURNED,
    },
    DeliveryItemStatus.DELIVERED: set(),  # terminal
    DeliveryItemStatus.FAILED: set(),  # terminal
    DeliveryItemStatus.RETURNED: set(),  # terminal
}

# Forward step taken when an item has to be walked towards a later status
_ITEM_NEXT_STEP = {
    DeliveryItemStatus.PENDING: DeliveryItemStatus.ASSIGNED,
    DeliveryItemStatus.ASSIGNED: DeliveryItemStatus.IN_TRANSIT,
}

TERMINAL_ITEM_STATUSES = {
    DeliveryItemStatus.DELIVERED,
    DeliveryItemStatus.FAILED,
    DeliveryItemStatus.RETURNED,
}

_EDITABLE_STATUSES = {DeliveryOrderStatus.PENDING, DeliveryOrderStatus.ASSIGNED}

_CLOSED_STATUSES = {DeliveryOrderStatus.COMPLETED, DeliveryOrderStatus.PARTIALLY_COMPLETED}

_OPEN_STOP_STATUSES = {StopStatus.PENDING.value, StopStatus.ARRIVED.value}

_POD_FIELDS = (
    "delivered_to",
    "relationship",
    "id_number",
    "signature_ref",
    "photos",
    "notes",
    "longitude",
    "latitude",
    "cod_collected",
    "cod_amount",
    "payment_method",
    "receipt_number",
    "delivered_at",
)

_ROUTE_FIELDS = (
    "optimized",
    "optimized_at",
    "total_distance_km",
    "estimated_duration_min",
    "actual_start",
    "actual_end",
    "actual_duration_min",
)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@delivery.value_object(part_of="DeliveryOrder")
class GeoPoint:
    """A point on the map, stored as longitude/latitude in decimal degrees."""

    longitude = Float(required=True, min_value=-180.0, max_value=180.0)
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    address = String(max_length=500)

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)


@delivery.value_object(part_of="DeliveryOrder")
class ParcelDimensions:
    """Parcel size in centimetres."""

    length = Float(min_value=0.0)
    width = Float(min_value=0.0)
    height = Float(min_value=0.0)


@delivery.value_object(part_of="DeliveryOrder")
class ProofOfDelivery:
    """Evidence that an item was handed over, with optional COD collection.

    Replaced wholesale whenever COD payment details change.
    """

    delivered_to = String(required=True, max_length=200)
    relationship = String(max_length=100)
    id_number = String(max_length=100)
    signature_ref = String(required=True, max_length=500)
    photos = Text()  # JSON list of photo references
    notes = Text()
    longitude = Float(min_value=-180.0, max_value=180.0)
    latitude = Float(min_value=-90.0, max_value=90.0)
    cod_collected = Boolean(default=False)
    cod_amount = Float(min_value=0.0, default=0.0)
    payment_method = String(max_length=20, choices=CodPaymentMethod)
    receipt_number = String(max_length=100)
    delivered_at = DateTime(required=True)

    @invariant.post
    def payment_method_required_when_cod_collected(self):
        if self.cod_collected and not self.payment_method:
            raise ValidationError({"payment_method": ["Payment method is required when COD is collected"]})


@delivery.value_object(part_of="DeliveryOrder")
class RoutePlan:
    """Sequencing outcome and actual run times of the delivery route."""

    optimized = Boolean(default=False)
    optimized_at = DateTime()
    total_distance_km = Float(min_value=0.0, default=0.0)
    estimated_duration_min = Integer(min_value=0, default=0)
    actual_start = DateTime()
    actual_end = DateTime()
    actual_duration_min = Integer(min_value=0)


@delivery.value_object(part_of="DeliveryOrder")
class DeliverySummary:
    """Counts and COD totals folded over the order's items."""

    total_items = Integer(default=0)
    delivered_count = Integer(default=0)
    failed_count = Integer(default=0)
    returned_count = Integer(default=0)
    pending_count = Integer(default=0)
    total_cod_amount = Float(default=0.0)
    cod_collected_amount = Float(default=0.0)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@delivery.entity(part_of="DeliveryOrder")
class DeliveryItem:
    """A shipment item carried by the delivery order."""

    shipment_order_ref = Identifier(required=True)
    waybill_number = String(required=True, max_length=50)
    receiver_name = String(required=True, max_length=200)
    receiver_address = String(required=True, max_length=500)
    receiver_phone = String(required=True, max_length=30)
    receiver_location = ValueObject(GeoPoint)
    description = String(max_length=500)
    weight_kg = Float(min_value=0.0, default=0.0)
    dimensions = ValueObject(ParcelDimensions)
    quantity = Integer(min_value=1, default=1)
    special_handling_notes = Text()
    payment_type = String(max_length=10, choices=PaymentType, default=PaymentType.CASH.value)
    cod_amount = Float()
    status = String(
        max_length=20,
        choices=DeliveryItemStatus,
        default=DeliveryItemStatus.PENDING.value,
    )
    failure_reason = String(max_length=500)
    return_reason = String(max_length=500)
    proof_of_delivery = ValueObject(ProofOfDelivery)

    @invariant.post
    def cod_amount_matches_payment_type(self):
        if self.payment_type == PaymentType.COD.value:
            if self.cod_amount is None or self.cod_amount <= 0:
                raise ValidationError({"cod_amount": ["COD items require a positive COD amount"]})
        elif self.cod_amount:
            raise ValidationError({"cod_amount": ["Only COD items carry a COD amount"]})


@delivery.entity(part_of="DeliveryOrder")
class StatusChange:
    """An accepted order status transition."""

    status = String(required=True, max_length=30, choices=DeliveryOrderStatus)
    note = Text()
    location = ValueObject(GeoPoint)
    performed_by = String(required=True, max_length=100)
    occurred_at = DateTime(required=True)


@delivery.entity(part_of="DeliveryOrder")
class ItemStatusChange:
    """An accepted item status transition."""

    item_id = Identifier(required=True)
    status = String(required=True, max_length=20, choices=DeliveryItemStatus)
    note = Text()
    performed_by = String(required=True, max_length=100)
    occurred_at = DateTime(required=True)


@delivery.entity(part_of="DeliveryOrder")
class RouteStop:
    """A sequenced stop on the delivery route."""

    location = ValueObject(GeoPoint, required=True)
    item_id = Identifier()
    waybill_number = String(max_length=50)
    sequence = Integer(required=True, min_value=1)
    estimated_arrival = DateTime()
    actual_arrival = DateTime()
    status = String(max_length=20, choices=StopStatus, default=StopStatus.PENDING.value)


@delivery.entity(part_of="DeliveryOrder")
class TrackingLocation:
    """An observed vehicle position."""

    position = ValueObject(GeoPoint, required=True)
    speed = Float()
    heading = Float(min_value=0.0, max_value=360.0)
    accuracy = Float(min_value=0.0)
    provider = String(max_length=50)
    tag = String(max_length=30)
    performed_by = String(required=True, max_length=100)
    recorded_at = DateTime(required=True)


@delivery.entity(part_of="DeliveryOrder")
class ActivityEntry:
    """A line in the order's activity log."""

    kind = String(required=True, max_length=30, choices=ActivityKind)
    performed_by = String(required=True, max_length=100)
    occurred_at = DateTime(required=True)
    details = Text()  # JSON object


@delivery.entity(part_of="DeliveryOrder")
class DeliveryIssue:
    """An operational problem reported during the delivery run."""

    kind = String(required=True, max_length=20, choices=IssueKind)
    description = Text(required=True)
    severity = String(max_length=20, choices=IssueSeverity, default=IssueSeverity.MEDIUM.value)
    status = String(max_length=20, choices=IssueStatus, default=IssueStatus.REPORTED.value)
    location = ValueObject(GeoPoint)
    reported_by = String(required=True, max_length=100)
    reported_at = DateTime(required=True)
    resolution = Text()
    resolved_by = String(max_length=100)
    resolved_at = DateTime()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _to_point(value) -> GeoPoint | None:
    """Accept a GeoPoint, a mapping with longitude/latitude, or None."""
    if value is None or isinstance(value, GeoPoint):
        return value
    return GeoPoint(
        longitude=value.get("longitude"),
        latitude=value.get("latitude"),
        address=value.get("address"),
    )


def _validate_scheduled_time(scheduled_time: str | None) -> None:
    if scheduled_time and not _SCHEDULED_TIME.match(scheduled_time):
        raise ValidationError({"scheduled_time": ["Scheduled time must use the HH:MM format"]})


def _item_path(current: DeliveryItemStatus, target: DeliveryItemStatus) -> list[DeliveryItemStatus]:
    """Statuses an item passes through to reach ``target``, walking forward when needed."""
    path = []
    step = current
    while target not in _ITEM_TRANSITIONS[step]:
        next_step = _ITEM_NEXT_STEP.get(step)
        if next_step is None:
            raise InvalidTransitionError(current.value, target.value, subject="item_status")
        path.append(next_step)
        step = next_step
    path.append(target)
    return path


def _build_item(item_data: dict) -> "DeliveryItem":
    location = item_data.get("receiver_location")
    dimensions = item_data.get("dimensions")
    return DeliveryItem(
        shipment_order_ref=item_data.get("shipment_order_ref"),
        waybill_number=item_data.get("waybill_number"),
        receiver_name=item_data.get("receiver_name"),
        receiver_address=item_data.get("receiver_address"),
        receiver_phone=item_data.get("receiver_phone"),
        receiver_location=_to_point(location),
        description=item_data.get("description"),
        weight_kg=item_data.get("weight_kg") or 0.0,
        dimensions=ParcelDimensions(**dimensions) if dimensions else None,
        quantity=item_data.get("quantity") or 1,
        special_handling_notes=item_data.get("special_handling_notes"),
        payment_type=item_data.get("payment_type") or PaymentType.CASH.value,
        cod_amount=item_data.get("cod_amount"),
        status=DeliveryItemStatus.PENDING.value,
    )


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@delivery.aggregate
class DeliveryOrder:
    order_number = String(required=True, max_length=20, unique=True)
    branch_id = Identifier(required=True)
    branch_code = String(required=True, max_length=2)
    number_date = String(required=True, max_length=6)  # YYMMDD
    number_sequence = Integer(required=True, min_value=1)
    vehicle_id = Identifier()
    driver_id = Identifier()
    helper_id = Identifier()
    scheduled_date = Date(required=True)
    scheduled_time = String(max_length=5)
    priority = String(max_length=10, choices=Priority, default=Priority.NORMAL.value)
    notes = Text()
    status = String(
        max_length=30,
        choices=DeliveryOrderStatus,
        default=DeliveryOrderStatus.PENDING.value,
    )
    cancellation_reason = String(max_length=500)
    failure_reason = String(max_length=500)
    start_location = ValueObject(GeoPoint)
    end_location = ValueObject(GeoPoint)
    route = ValueObject(RoutePlan)
    summary = ValueObject(DeliverySummary)
    items = HasMany(DeliveryItem)
    status_history = HasMany(StatusChange)
    item_status_history = HasMany(ItemStatusChange)
    route_stops = HasMany(RouteStop)
    tracking_locations = HasMany(TrackingLocation)
    activity_log = HasMany(ActivityEntry)
    issues = HasMany(DeliveryIssue)
    created_by = String(max_length=100)
    updated_by = String(max_length=100)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number: str,
        branch_id: str,
        branch_code: str,
        number_date: str,
        number_sequence: int,
        scheduled_date,
        start_location,
        items_data: list[dict],
        created_by: str,
        end_location=None,
        scheduled_time: str | None = None,
        priority: str | None = None,
        notes: str | None = None,
        vehicle_id: str | None = None,
        driver_id: str | None = None,
        helper_id: str | None = None,
    ):
        """Create a pending delivery order with its initial items."""
        if not items_data:
            raise ValidationError({"items": ["A delivery order needs at least one item"]})
        if start_location is None:
            raise ValidationError({"start_location": ["Start location is required"]})
        _validate_scheduled_time(scheduled_time)

        items = [_build_item(item_data) for item_data in items_data]
        waybills = [item.waybill_number for item in items]
        duplicates = sorted({w for w in waybills if waybills.count(w) > 1})
        if duplicates:
            raise ValidationError({"items": [f"Duplicate waybill number(s): {', '.join(duplicates)}"]})

        now = clock.now()
        order = cls(
            order_number=order_number,
            branch_id=branch_id,
            branch_code=branch_code,
            number_date=number_date,
            number_sequence=number_sequence,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            helper_id=helper_id,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            priority=priority or Priority.NORMAL.value,
            notes=notes,
            status=DeliveryOrderStatus.PENDING.value,
            start_location=_to_point(start_location),
            end_location=_to_point(end_location),
            route=RoutePlan(),
            summary=DeliverySummary(),
            created_by=created_by,
            updated_by=created_by,
            created_at=now,
            updated_at=now,
        )
        for item in items:
            order.add_items(item)
            order._record_item_status(item, DeliveryItemStatus.PENDING, created_by, note="Item created")

        order._record_status(DeliveryOrderStatus.PENDING, created_by, note="Delivery order created")
        order._log_activity(
            ActivityKind.CREATED,
            created_by,
            order_number=order_number,
            item_count=len(items),
        )
        order._refresh_summary()
        order.raise_(
            DeliveryOrderCreated(
                order_id=str(order.id),
                order_number=order_number,
                branch_id=branch_id,
                branch_code=branch_code,
                scheduled_date=order.scheduled_date,
                item_count=len(items),
                total_cod_amount=order.summary.total_cod_amount,
                created_by=created_by,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def find_item(self, item_id: str) -> DeliveryItem:
        item = next((i for i in (self.items or []) if str(i.id) == str(item_id)), None)
        if item is None:
            raise ObjectNotFoundError({"item_id": [f"Item {item_id} not found in delivery order {self.order_number}"]})
        return item

    def history_for(self, item_id: str) -> list[ItemStatusChange]:
        """Status history of a single item, oldest first."""
        entries = [h for h in (self.item_status_history or []) if str(h.item_id) == str(item_id)]
        return sorted(entries, key=lambda h: h.occurred_at)

    def ordered_stops(self) -> list[RouteStop]:
        return sorted(self.route_stops or [], key=lambda s: s.sequence)

    def assert_can_transition(self, target_status: DeliveryOrderStatus) -> None:
        """Raise InvalidTransitionError unless the state machine allows ``target_status`` next."""
        current = DeliveryOrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(current.value, target_status.value)

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------
    def _require_status(self, allowed: set, action: str) -> None:
        current = DeliveryOrderStatus(self.status)
        if current not in allowed:
            raise PreconditionFailedError({"status": [f"Cannot {action} while the delivery order is {current.value}"]})

    def _touch(self, performed_by: str) -> None:
        self.updated_by = performed_by
        self.updated_at = clock.now()

    def _record_status(self, status: DeliveryOrderStatus, performed_by: str, note=None, location=None) -> None:
        self.add_status_history(
            StatusChange(
                status=status.value,
                note=note,
                location=location,
                performed_by=performed_by,
                occurred_at=clock.now(),
            )
        )

    def _record_item_status(self, item, status: DeliveryItemStatus, performed_by: str, note=None) -> None:
        self.add_item_status_history(
            ItemStatusChange(
                item_id=str(item.id),
                status=status.value,
                note=note,
                performed_by=performed_by,
                occurred_at=clock.now(),
            )
        )

    def _transition(self, target: DeliveryOrderStatus, performed_by: str, note=None, location=None) -> None:
        self.status = target.value
        self._record_status(target, performed_by, note=note, location=location)
        self._touch(performed_by)

    def _walk_item(self, item, path: list[DeliveryItemStatus], performed_by: str, note=None) -> None:
        for step in path:
            item.status = step.value
            self._record_item_status(item, step, performed_by, note=note)

    def _log_activity(self, kind: ActivityKind, performed_by: str, /, **details) -> None:
        self.add_activity_log(
            ActivityEntry(
                kind=kind.value,
                performed_by=performed_by,
                occurred_at=clock.now(),
                details=json.dumps(details, default=str),
            )
        )

    def _add_tracking(self, point: GeoPoint, performed_by: str, tag=None, **observation) -> None:
        self.add_tracking_locations(
            TrackingLocation(
                position=point,
                tag=tag,
                performed_by=performed_by,
                recorded_at=clock.now(),
                **observation,
            )
        )

    def _replace_route(self, **changes) -> None:
        current = self.route
        values = {name: getattr(current, name) if current is not None else None for name in _ROUTE_FIELDS}
        values.update(changes)
        if values["optimized"] is None:
            values["optimized"] = False
        self.route = RoutePlan(**{k: v for k, v in values.items() if v is not None})

    def _close_stops_for(self, item, status: StopStatus) -> None:
        now = clock.now()
        for stop in self.route_stops or []:
            if str(stop.item_id) == str(item.id) and stop.status in _OPEN_STOP_STATUSES:
                stop.status = status.value
                if status == StopStatus.COMPLETED and stop.actual_arrival is None:
                    stop.actual_arrival = now

    def _refresh_summary(self) -> None:
        items = self.items or []
        counts = {status: 0 for status in DeliveryItemStatus}
        total_cod = 0.0
        collected_cod = 0.0
        for item in items:
            counts[DeliveryItemStatus(item.status)] += 1
            if item.payment_type == PaymentType.COD.value:
                total_cod += item.cod_amount or 0.0
            pod = item.proof_of_delivery
            if pod is not None and pod.cod_collected:
                collected_cod += pod.cod_amount or 0.0

        terminal = sum(counts[s] for s in TERMINAL_ITEM_STATUSES)
        self.summary = DeliverySummary(
            total_items=len(items),
            delivered_count=counts[DeliveryItemStatus.DELIVERED],
            failed_count=counts[DeliveryItemStatus.FAILED],
            returned_count=counts[DeliveryItemStatus.RETURNED],
            pending_count=len(items) - terminal,
            total_cod_amount=total_cod,
            cod_collected_amount=collected_cod,
        )

    # -------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------
    def add_item(self, item_data: dict, performed_by: str) -> DeliveryItem:
        """Add an item while the order has not started."""
        self._require_status(_EDITABLE_STATUSES, "add items")
        item = _build_item(item_data)
        if any(i.waybill_number == item.waybill_number for i in (self.items or [])):
            raise ValidationError({"waybill_number": [f"Waybill {item.waybill_number} is already on this order"]})

        self.add_items(item)
        self._record_item_status(item, DeliveryItemStatus.PENDING, performed_by, note="Item added")
        if DeliveryOrderStatus(self.status) == DeliveryOrderStatus.ASSIGNED:
            self._walk_item(item, [DeliveryItemStatus.ASSIGNED], performed_by, note="Order already assigned")

        # New destinations are not on the sequenced route yet
        self._replace_route(optimized=False)
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.ITEM_ADDED,
            performed_by,
            item_id=str(item.id),
            waybill_number=item.waybill_number,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryItemAdded(
                order_id=str(self.id),
                item_id=str(item.id),
                waybill_number=item.waybill_number,
                payment_type=item.payment_type,
                cod_amount=item.cod_amount or 0.0,
                added_at=self.updated_at,
            )
        )
        return item

    def remove_item(self, item_id: str, performed_by: str) -> None:
        """Remove an item and its route stop while the order has not started."""
        self._require_status(_EDITABLE_STATUSES, "remove items")
        item = self.find_item(item_id)
        if len(self.items) == 1:
            raise PreconditionFailedError({"items": ["Cannot remove the last item of a delivery order"]})

        for stop in [s for s in (self.route_stops or []) if str(s.item_id) == str(item.id)]:
            self.remove_route_stops(stop)
        remaining = self.ordered_stops()
        for position, stop in enumerate(remaining, start=1):
            stop.sequence = position

        cod_amount = item.cod_amount or 0.0
        waybill_number = item.waybill_number
        self.remove_items(item)
        self._replace_route(optimized=False)
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.ITEM_REMOVED,
            performed_by,
            item_id=str(item_id),
            waybill_number=waybill_number,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryItemRemoved(
                order_id=str(self.id),
                item_id=str(item_id),
                waybill_number=waybill_number,
                cod_amount=cod_amount,
                removed_at=self.updated_at,
            )
        )

    def update_details(
        self,
        performed_by: str,
        priority: str | None = None,
        notes: str | None = None,
        scheduled_date=None,
        scheduled_time: str | None = None,
        start_location=None,
        end_location=None,
    ) -> list[str]:
        """Edit schedule, priority, notes or locations before the run starts.

        Arguments left as None are unchanged. A new start or end location
        invalidates the sequenced route. Returns the names of changed fields.
        """
        self._require_status(_EDITABLE_STATUSES, "update the delivery order")
        _validate_scheduled_time(scheduled_time)

        requested = {
            "priority": priority,
            "notes": notes,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "start_location": _to_point(start_location),
            "end_location": _to_point(end_location),
        }
        changed = [
            name for name, value in requested.items() if value is not None and value != getattr(self, name)
        ]
        if not changed:
            return []

        for name in changed:
            setattr(self, name, requested[name])
        route_invalidated = bool({"start_location", "end_location"} & set(changed))
        if route_invalidated:
            self._replace_route(optimized=False)

        self._touch(performed_by)
        self._log_activity(ActivityKind.UPDATED, performed_by, changed_fields=changed)
        self._refresh_summary()
        self.raise_(
            DeliveryOrderUpdated(
                order_id=str(self.id),
                changed_fields=json.dumps(changed),
                scheduled_date=self.scheduled_date,
                priority=self.priority,
                route_invalidated=route_invalidated,
                updated_at=self.updated_at,
            )
        )
        return changed

    # -------------------------------------------------------------------
    # Order lifecycle
    # -------------------------------------------------------------------
    def assign(
        self,
        vehicle_id: str,
        driver_id: str,
        performed_by: str,
        helper_id: str | None = None,
        scheduled_date=None,
        scheduled_time: str | None = None,
    ) -> None:
        """Assign a vehicle and crew; pending items become assigned."""
        self.assert_can_transition(DeliveryOrderStatus.ASSIGNED)
        if not vehicle_id or not driver_id:
            raise ValidationError({"assignment": ["Vehicle and driver are both required"]})
        _validate_scheduled_time(scheduled_time)

        self.vehicle_id = vehicle_id
        self.driver_id = driver_id
        self.helper_id = helper_id
        if scheduled_date is not None:
            self.scheduled_date = scheduled_date
        if scheduled_time is not None:
            self.scheduled_time = scheduled_time

        for item in self.items or []:
            if item.status == DeliveryItemStatus.PENDING.value:
                self._walk_item(item, [DeliveryItemStatus.ASSIGNED], performed_by, note="Order assigned")

        self._transition(DeliveryOrderStatus.ASSIGNED, performed_by, note=f"Assigned to driver {driver_id}")
        self._log_activity(
            ActivityKind.ASSIGNED,
            performed_by,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            helper_id=helper_id,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryOrderAssigned(
                order_id=str(self.id),
                vehicle_id=vehicle_id,
                driver_id=driver_id,
                helper_id=helper_id,
                item_count=len(self.items or []),
                assigned_at=self.updated_at,
            )
        )

    def start(self, performed_by: str, location=None) -> None:
        """Leave the branch: items go in transit and the run clock starts."""
        self.assert_can_transition(DeliveryOrderStatus.IN_PROGRESS)
        point = _to_point(location)
        if point is None:
            point = self.start_location

        for item in self.items or []:
            if DeliveryItemStatus(item.status) in _ITEM_NEXT_STEP:
                path = _item_path(DeliveryItemStatus(item.status), DeliveryItemStatus.IN_TRANSIT)
                self._walk_item(item, path, performed_by, note="Delivery started")

        now = clock.now()
        self._replace_route(actual_start=now)
        self._transition(DeliveryOrderStatus.IN_PROGRESS, performed_by, note="Delivery started", location=point)
        if point is not None:
            self._add_tracking(point, performed_by, tag="started")
        self._log_activity(ActivityKind.STARTED, performed_by)
        self._refresh_summary()
        self.raise_(
            DeliveryStarted(
                order_id=str(self.id),
                driver_id=self.driver_id,
                longitude=point.longitude if point is not None else None,
                latitude=point.latitude if point is not None else None,
                started_at=now,
            )
        )

    def complete(self, performed_by: str, location=None, notes: str | None = None) -> None:
        """Close the run once every item is delivered, failed or returned."""
        self.assert_can_transition(DeliveryOrderStatus.COMPLETED)
        incomplete = [i for i in (self.items or []) if DeliveryItemStatus(i.status) not in TERMINAL_ITEM_STATUSES]
        if incomplete:
            raise PreconditionFailedError(
                {"items": [f"{len(incomplete)} item(s) are not yet delivered, failed or returned"]}
            )
        point = next((p for p in (_to_point(location), self.end_location, self.start_location) if p is not None), None)

        all_delivered = all(i.status == DeliveryItemStatus.DELIVERED.value for i in (self.items or []))
        outcome = DeliveryOrderStatus.COMPLETED if all_delivered else DeliveryOrderStatus.PARTIALLY_COMPLETED

        now = clock.now()
        started = self.route.actual_start if self.route is not None else None
        duration = round((now - started).total_seconds() / 60) if started is not None else None
        self._replace_route(actual_end=now, actual_duration_min=duration)
        self._transition(outcome, performed_by, note=notes, location=point)
        if point is not None:
            self._add_tracking(point, performed_by, tag="completed")
        self._refresh_summary()
        self._log_activity(
            ActivityKind.COMPLETED,
            performed_by,
            outcome=outcome.value,
            delivered_count=self.summary.delivered_count,
            failed_count=self.summary.failed_count,
            returned_count=self.summary.returned_count,
        )
        self.raise_(
            DeliveryOrderCompleted(
                order_id=str(self.id),
                status=outcome.value,
                delivered_count=self.summary.delivered_count,
                failed_count=self.summary.failed_count,
                returned_count=self.summary.returned_count,
                actual_duration_min=duration,
                completed_at=now,
            )
        )

    def cancel(self, reason: str, performed_by: str) -> None:
        """Cancel the order before the run starts."""
        self.assert_can_transition(DeliveryOrderStatus.CANCELLED)
        if not reason:
            raise ValidationError({"reason": ["A cancellation reason is required"]})

        self.cancellation_reason = reason
        self._transition(DeliveryOrderStatus.CANCELLED, performed_by, note=reason)
        self._log_activity(ActivityKind.CANCELLED, performed_by, reason=reason)
        self._refresh_summary()
        self.raise_(
            DeliveryOrderCancelled(
                order_id=str(self.id),
                reason=reason,
                cancelled_at=self.updated_at,
            )
        )

    def fail(self, reason: str, performed_by: str, location=None) -> None:
        """Abandon the run. Item statuses are left as they are."""
        self.assert_can_transition(DeliveryOrderStatus.FAILED)
        if not reason:
            raise ValidationError({"reason": ["A failure reason is required"]})
        point = _to_point(location)

        self.failure_reason = reason
        self._transition(DeliveryOrderStatus.FAILED, performed_by, note=reason, location=point)
        self._log_activity(ActivityKind.FAILED, performed_by, reason=reason)
        self._refresh_summary()
        self.raise_(
            DeliveryOrderFailed(
                order_id=str(self.id),
                reason=reason,
                failed_at=self.updated_at,
            )
        )

    def reopen(self, performed_by: str, notes: str | None = None) -> None:
        """Put a failed or cancelled order back to pending."""
        self.assert_can_transition(DeliveryOrderStatus.PENDING)
        previous = self.status

        self._transition(DeliveryOrderStatus.PENDING, performed_by, note=notes or f"Reopened from {previous}")
        self._log_activity(ActivityKind.REOPENED, performed_by, previous_status=previous)
        self._refresh_summary()
        self.raise_(
            DeliveryOrderReopened(
                order_id=str(self.id),
                previous_status=previous,
                reopened_at=self.updated_at,
            )
        )

    # -------------------------------------------------------------------
    # Item outcomes
    # -------------------------------------------------------------------
    def record_proof_of_delivery(self, item_id: str, proof: dict, performed_by: str) -> None:
        """Capture proof of delivery; the item becomes delivered and its stop completed.

        Does not complete the order, even when this was the last open item.
        """
        self._require_status({DeliveryOrderStatus.IN_PROGRESS}, "record proof of delivery")
        item = self.find_item(item_id)
        cod_collected = bool(proof.get("cod_collected"))
        if cod_collected and item.payment_type != PaymentType.COD.value:
            raise ValidationError({"cod_collected": ["COD can only be collected on cash-on-delivery items"]})

        now = clock.now()
        location = _to_point(proof.get("location"))
        pod = ProofOfDelivery(
            delivered_to=proof.get("delivered_to"),
            relationship=proof.get("relationship"),
            id_number=proof.get("id_number"),
            signature_ref=proof.get("signature_ref"),
            photos=json.dumps(proof.get("photos") or []),
            notes=proof.get("notes"),
            longitude=location.longitude if location is not None else None,
            latitude=location.latitude if location is not None else None,
            cod_collected=cod_collected,
            cod_amount=(proof.get("cod_amount") or item.cod_amount or 0.0) if cod_collected else 0.0,
            payment_method=proof.get("payment_method"),
            receipt_number=proof.get("receipt_number"),
            delivered_at=now,
        )
        path = _item_path(DeliveryItemStatus(item.status), DeliveryItemStatus.DELIVERED)

        self._walk_item(item, path, performed_by, note=f"Delivered to {pod.delivered_to}")
        item.proof_of_delivery = pod
        self._close_stops_for(item, StopStatus.COMPLETED)
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.POD_RECORDED,
            performed_by,
            item_id=str(item.id),
            waybill_number=item.waybill_number,
            delivered_to=pod.delivered_to,
            cod_collected=cod_collected,
        )
        self._refresh_summary()
        self.raise_(
            ProofOfDeliveryRecorded(
                order_id=str(self.id),
                item_id=str(item.id),
                waybill_number=item.waybill_number,
                delivered_to=pod.delivered_to,
                cod_collected=cod_collected,
                cod_amount=pod.cod_amount,
                delivered_at=now,
            )
        )

    def record_cod_payment(self, item_id: str, payment: dict, performed_by: str) -> None:
        """Record COD payment details on a delivered item's proof of delivery."""
        item = self.find_item(item_id)
        if item.payment_type != PaymentType.COD.value:
            raise PreconditionFailedError({"payment_type": ["Item is not cash on delivery"]})
        if item.proof_of_delivery is None:
            raise PreconditionFailedError({"proof_of_delivery": ["Proof of delivery must be recorded first"]})

        amount = payment.get("amount")
        if amount is None:
            amount = item.cod_amount
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["COD amount must be positive"]})

        current = item.proof_of_delivery
        previous_amount = current.cod_amount if current.cod_collected else 0.0
        values = {name: getattr(current, name) for name in _POD_FIELDS}
        values.update(
            cod_collected=True,
            cod_amount=amount,
            payment_method=payment.get("payment_method"),
            receipt_number=payment.get("receipt_number") or current.receipt_number,
        )
        pod = ProofOfDelivery(**values)

        item.proof_of_delivery = pod
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.COD_COLLECTED,
            performed_by,
            item_id=str(item.id),
            amount=amount,
            payment_method=pod.payment_method,
            receipt_number=pod.receipt_number,
        )
        self._refresh_summary()
        self.raise_(
            CODPaymentRecorded(
                order_id=str(self.id),
                item_id=str(item.id),
                amount=amount,
                previous_amount=previous_amount or 0.0,
                payment_method=pod.payment_method,
                receipt_number=pod.receipt_number,
                collected_at=self.updated_at,
            )
        )

    def record_failed_delivery(self, item_id: str, reason: str, performed_by: str, location=None) -> None:
        """The item could not be handed over; its stop is skipped."""
        self._require_status({DeliveryOrderStatus.IN_PROGRESS}, "record a failed delivery")
        item = self.find_item(item_id)
        if not reason:
            raise ValidationError({"reason": ["A failure reason is required"]})
        point = _to_point(location)
        path = _item_path(DeliveryItemStatus(item.status), DeliveryItemStatus.FAILED)

        self._walk_item(item, path, performed_by, note=reason)
        item.failure_reason = reason
        self._close_stops_for(item, StopStatus.SKIPPED)
        if point is not None:
            self._add_tracking(point, performed_by, tag="delivery_failed")
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.DELIVERY_FAILED,
            performed_by,
            item_id=str(item.id),
            waybill_number=item.waybill_number,
            reason=reason,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryAttemptFailed(
                order_id=str(self.id),
                item_id=str(item.id),
                waybill_number=item.waybill_number,
                reason=reason,
                failed_at=self.updated_at,
            )
        )

    def record_item_return(self, item_id: str, reason: str, performed_by: str) -> None:
        """The item goes back to the branch undelivered; its stop is skipped."""
        self._require_status({DeliveryOrderStatus.IN_PROGRESS}, "record a return")
        item = self.find_item(item_id)
        if not reason:
            raise ValidationError({"reason": ["A return reason is required"]})
        path = _item_path(DeliveryItemStatus(item.status), DeliveryItemStatus.RETURNED)

        self._walk_item(item, path, performed_by, note=reason)
        item.return_reason = reason
        self._close_stops_for(item, StopStatus.SKIPPED)
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.ITEM_RETURNED,
            performed_by,
            item_id=str(item.id),
            waybill_number=item.waybill_number,
            reason=reason,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryItemReturned(
                order_id=str(self.id),
                item_id=str(item.id),
                waybill_number=item.waybill_number,
                reason=reason,
                returned_at=self.updated_at,
            )
        )

    # -------------------------------------------------------------------
    # Route
    # -------------------------------------------------------------------
    def optimize_route(self, performed_by: str, engine: RouteEngine | None = None) -> None:
        """Sequence stops by nearest neighbour from the start location.

        Items without a receiver location are left off the route.
        """
        self._require_status(_EDITABLE_STATUSES, "optimize the route")
        if self.start_location is None:
            raise PreconditionFailedError({"start_location": ["Route optimization needs a start location"]})
        engine = engine or RouteEngine()

        routable = [i for i in (self.items or []) if i.receiver_location is not None]
        unrouted = [i.waybill_number for i in (self.items or []) if i.receiver_location is None]
        candidates = [
            StopCandidate(
                coordinates=i.receiver_location.coordinates,
                item_id=str(i.id),
                waybill_number=i.waybill_number,
                address=i.receiver_location.address or i.receiver_address,
            )
            for i in routable
        ]
        now = clock.now()
        plan = engine.plan(
            self.start_location.coordinates,
            candidates,
            departure=now,
            end=self.end_location.coordinates if self.end_location is not None else None,
        )

        for stop in list(self.route_stops or []):
            self.remove_route_stops(stop)
        for planned in plan.stops:
            longitude, latitude = planned.candidate.coordinates
            self.add_route_stops(
                RouteStop(
                    location=GeoPoint(longitude=longitude, latitude=latitude, address=planned.candidate.address),
                    item_id=planned.candidate.item_id,
                    waybill_number=planned.candidate.waybill_number,
                    sequence=planned.sequence,
                    estimated_arrival=planned.estimated_arrival,
                    status=StopStatus.PENDING.value,
                )
            )

        self._replace_route(
            optimized=True,
            optimized_at=now,
            total_distance_km=plan.total_distance_km,
            estimated_duration_min=plan.estimated_duration_min,
        )
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.ROUTE_OPTIMIZED,
            performed_by,
            stop_count=len(plan.stops),
            total_distance_km=round(plan.total_distance_km, 3),
            estimated_duration_min=plan.estimated_duration_min,
            unrouted_waybills=unrouted,
        )
        self._refresh_summary()
        self.raise_(
            RouteOptimized(
                order_id=str(self.id),
                stop_count=len(plan.stops),
                total_distance_km=plan.total_distance_km,
                estimated_duration_min=plan.estimated_duration_min,
                unrouted_waybills=json.dumps(unrouted),
                optimized_at=now,
            )
        )

    def mark_stop_arrived(self, stop_id: str, performed_by: str) -> None:
        """The crew reached a pending stop."""
        self._require_status({DeliveryOrderStatus.IN_PROGRESS}, "mark stop arrival")
        stop = next((s for s in (self.route_stops or []) if str(s.id) == str(stop_id)), None)
        if stop is None:
            raise ObjectNotFoundError({"stop_id": [f"Stop {stop_id} not found in delivery order {self.order_number}"]})
        if stop.status != StopStatus.PENDING.value:
            raise InvalidTransitionError(stop.status, StopStatus.ARRIVED.value, subject="stop_status")

        now = clock.now()
        stop.status = StopStatus.ARRIVED.value
        stop.actual_arrival = now
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.STOP_ARRIVED,
            performed_by,
            stop_id=str(stop.id),
            sequence=stop.sequence,
        )
        self._refresh_summary()
        self.raise_(
            StopArrived(
                order_id=str(self.id),
                stop_id=str(stop.id),
                sequence=stop.sequence,
                arrived_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------
    def record_location(
        self,
        longitude: float,
        latitude: float,
        performed_by: str,
        speed: float | None = None,
        heading: float | None = None,
        accuracy: float | None = None,
        address: str | None = None,
        provider: str | None = None,
        engine: RouteEngine | None = None,
    ) -> int:
        """Append a position observation; while in progress, re-project open stop ETAs.

        Stops keep their sequence. Returns the number of stops re-projected.
        """
        point = GeoPoint(longitude=longitude, latitude=latitude, address=address)
        now = clock.now()
        self._add_tracking(
            point,
            performed_by,
            speed=speed,
            heading=heading,
            accuracy=accuracy,
            provider=provider,
        )

        open_stops = [s for s in self.ordered_stops() if s.status in _OPEN_STOP_STATUSES]
        if DeliveryOrderStatus(self.status) == DeliveryOrderStatus.IN_PROGRESS and open_stops:
            engine = engine or RouteEngine()
            arrivals = engine.reproject(
                point.coordinates,
                [s.location.coordinates for s in open_stops],
                observed_at=now,
                speed_kmh=speed,
            )
            for stop, arrival in zip(open_stops, arrivals, strict=True):
                stop.estimated_arrival = arrival
        else:
            open_stops = []

        self._touch(performed_by)
        self._refresh_summary()
        self.raise_(
            TrackingLocationRecorded(
                order_id=str(self.id),
                longitude=longitude,
                latitude=latitude,
                speed=speed,
                reprojected_stops=len(open_stops),
                recorded_at=now,
            )
        )
        return len(open_stops)

    # -------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------
    def report_issue(
        self,
        kind: str,
        description: str,
        performed_by: str,
        severity: str | None = None,
        location=None,
    ) -> DeliveryIssue:
        """Report an operational problem on an open order."""
        current = DeliveryOrderStatus(self.status)
        if current in _CLOSED_STATUSES:
            raise PreconditionFailedError({"status": [f"Cannot report issues on a {current.value} delivery order"]})

        issue = DeliveryIssue(
            kind=kind,
            description=description,
            severity=severity or IssueSeverity.MEDIUM.value,
            status=IssueStatus.REPORTED.value,
            location=_to_point(location),
            reported_by=performed_by,
            reported_at=clock.now(),
        )
        self.add_issues(issue)
        self._touch(performed_by)
        self._log_activity(
            ActivityKind.ISSUE_REPORTED,
            performed_by,
            issue_id=str(issue.id),
            kind=issue.kind,
            severity=issue.severity,
        )
        self._refresh_summary()
        self.raise_(
            DeliveryIssueReported(
                order_id=str(self.id),
                issue_id=str(issue.id),
                kind=issue.kind,
                severity=issue.severity,
                description=description,
                reported_at=issue.reported_at,
            )
        )
        return issue

    def resolve_issue(self, issue_id: str, resolution: str, performed_by: str) -> None:
        issue = next((i for i in (self.issues or []) if str(i.id) == str(issue_id)), None)
        if issue is None:
            raise ObjectNotFoundError({"issue_id": [f"Issue {issue_id} not found in delivery order {self.order_number}"]})
        if issue.status == IssueStatus.RESOLVED.value:
            raise InvalidTransitionError(issue.status, IssueStatus.RESOLVED.value, subject="issue_status")
        if not resolution:
            raise ValidationError({"resolution": ["A resolution is required"]})

        now = clock.now()
        issue.status = IssueStatus.RESOLVED.value
        issue.resolution = resolution
        issue.resolved_by = performed_by
        issue.resolved_at = now
        self._touch(performed_by)
        self._log_activity(ActivityKind.ISSUE_RESOLVED, performed_by, issue_id=str(issue.id))
        self._refresh_summary()
        self.raise_(
            DeliveryIssueResolved(
                order_id=str(self.id),
                issue_id=str(issue.id),
                resolution=resolution,
                resolved_at=now,
            )
        )
