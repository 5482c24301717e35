"""COD reconciliation: expected versus collected cash per delivery order."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.delivery_order.events import (
    CODPaymentRecorded,
    DeliveryItemAdded,
    DeliveryItemRemoved,
    DeliveryOrderCreated,
    ProofOfDeliveryRecorded,
)
from delivery.domain import delivery


@delivery.projection
class CodReconciliationView:
    order_id = Identifier(identifier=True, required=True)
    order_number = String(required=True)
    branch_code = String(required=True)
    expected_amount = Float(default=0.0)
    collected_amount = Float(default=0.0)
    outstanding_amount = Float(default=0.0)
    collected_items = Integer(default=0)
    last_receipt_number = String()
    updated_at = DateTime()


def _recompute(view):
    view.outstanding_amount = round(view.expected_amount - view.collected_amount, 2)


@delivery.projector(projector_for=CodReconciliationView, aggregates=[DeliveryOrder])
class CodReconciliationProjector:
    @on(DeliveryOrderCreated)
    def on_delivery_order_created(self, event):
        view = CodReconciliationView(
            order_id=event.order_id,
            order_number=event.order_number,
            branch_code=event.branch_code,
            expected_amount=event.total_cod_amount or 0.0,
            updated_at=event.created_at,
        )
        _recompute(view)
        current_domain.repository_for(CodReconciliationView).add(view)

    @on(DeliveryItemAdded)
    def on_item_added(self, event):
        if not event.cod_amount:
            return
        repo = current_domain.repository_for(CodReconciliationView)
        view = repo.get(event.order_id)
        view.expected_amount += event.cod_amount
        view.updated_at = event.added_at
        _recompute(view)
        repo.add(view)

    @on(DeliveryItemRemoved)
    def on_item_removed(self, event):
        if not event.cod_amount:
            return
        repo = current_domain.repository_for(CodReconciliationView)
        view = repo.get(event.order_id)
        view.expected_amount = max(view.expected_amount - event.cod_amount, 0.0)
        view.updated_at = event.removed_at
        _recompute(view)
        repo.add(view)

    @on(ProofOfDeliveryRecorded)
    def on_proof_of_delivery(self, event):
        if not event.cod_collected:
            return
        repo = current_domain.repository_for(CodReconciliationView)
        view = repo.get(event.order_id)
        view.collected_amount += event.cod_amount
        view.collected_items += 1
        view.updated_at = event.delivered_at
        _recompute(view)
        repo.add(view)

    @on(CODPaymentRecorded)
    def on_cod_payment(self, event):
        repo = current_domain.repository_for(CodReconciliationView)
        view = repo.get(event.order_id)
        if not event.previous_amount:
            view.collected_items += 1
        view.collected_amount += event.amount - (event.previous_amount or 0.0)
        view.last_receipt_number = event.receipt_number or view.last_receipt_number
        view.updated_at = event.collected_at
        _recompute(view)
        repo.add(view)
