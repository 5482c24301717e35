"""Delivery board: one row per delivery order for dispatch screens."""

from protean.core.projector import on
from protean.fields import Date, DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.delivery_order.events import (
    DeliveryAttemptFailed,
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
    TrackingLocationRecorded,
)
from delivery.domain import delivery


@delivery.projection
class DeliveryBoardView:
    order_id = Identifier(identifier=True, required=True)
    order_number = String(required=True)
    branch_code = String(required=True)
    scheduled_date = Date()
    status = String(required=True)
    vehicle_id = Identifier()
    driver_id = Identifier()
    total_items = Integer(default=0)
    delivered_count = Integer(default=0)
    failed_count = Integer(default=0)
    returned_count = Integer(default=0)
    last_longitude = Float()
    last_latitude = Float()
    last_seen_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()


@delivery.projector(projector_for=DeliveryBoardView, aggregates=[DeliveryOrder])
class DeliveryBoardProjector:
    def _update(self, order_id, updated_at, **changes):
        repo = current_domain.repository_for(DeliveryBoardView)
        view = repo.get(order_id)
        for name, value in changes.items():
            setattr(view, name, value)
        view.updated_at = updated_at
        repo.add(view)

    def _increment(self, order_id, field_name, updated_at, by=1):
        repo = current_domain.repository_for(DeliveryBoardView)
        view = repo.get(order_id)
        setattr(view, field_name, max(getattr(view, field_name) + by, 0))
        view.updated_at = updated_at
        repo.add(view)

    @on(DeliveryOrderCreated)
    def on_delivery_order_created(self, event):
        current_domain.repository_for(DeliveryBoardView).add(
            DeliveryBoardView(
                order_id=event.order_id,
                order_number=event.order_number,
                branch_code=event.branch_code,
                scheduled_date=event.scheduled_date,
                status="pending",
                total_items=event.item_count,
                created_at=event.created_at,
                updated_at=event.created_at,
            )
        )

    @on(DeliveryItemAdded)
    def on_item_added(self, event):
        self._increment(event.order_id, "total_items", event.added_at)

    @on(DeliveryItemRemoved)
    def on_item_removed(self, event):
        self._increment(event.order_id, "total_items", event.removed_at, by=-1)

    @on(DeliveryOrderAssigned)
    def on_assigned(self, event):
        self._update(
            event.order_id,
            event.assigned_at,
            status="assigned",
            vehicle_id=event.vehicle_id,
            driver_id=event.driver_id,
        )

    @on(DeliveryOrderUpdated)
    def on_updated(self, event):
        self._update(event.order_id, event.updated_at, scheduled_date=event.scheduled_date)

    @on(DeliveryStarted)
    def on_started(self, event):
        changes = {"status": "in_progress"}
        if event.longitude is not None:
            changes.update(last_longitude=event.longitude, last_latitude=event.latitude, last_seen_at=event.started_at)
        self._update(event.order_id, event.started_at, **changes)

    @on(ProofOfDeliveryRecorded)
    def on_proof_of_delivery(self, event):
        self._increment(event.order_id, "delivered_count", event.delivered_at)

    @on(DeliveryAttemptFailed)
    def on_attempt_failed(self, event):
        self._increment(event.order_id, "failed_count", event.failed_at)

    @on(DeliveryItemReturned)
    def on_item_returned(self, event):
        self._increment(event.order_id, "returned_count", event.returned_at)

    @on(TrackingLocationRecorded)
    def on_tracking_location(self, event):
        self._update(
            event.order_id,
            event.recorded_at,
            last_longitude=event.longitude,
            last_latitude=event.latitude,
            last_seen_at=event.recorded_at,
        )

    @on(DeliveryOrderCompleted)
    def on_completed(self, event):
        self._update(
            event.order_id,
            event.completed_at,
            status=event.status,
            delivered_count=event.delivered_count,
            failed_count=event.failed_count,
            returned_count=event.returned_count,
        )

    @on(DeliveryOrderCancelled)
    def on_cancelled(self, event):
        self._update(event.order_id, event.cancelled_at, status="cancelled")

    @on(DeliveryOrderFailed)
    def on_failed(self, event):
        self._update(event.order_id, event.failed_at, status="failed")

    @on(DeliveryOrderReopened)
    def on_reopened(self, event):
        self._update(event.order_id, event.reopened_at, status="pending")
