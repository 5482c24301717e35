"""FastAPI routes for the Delivery domain.

Every mutating endpoint goes through ``process_exclusively`` so that at most
one command runs per delivery order. Creation is serialized per branch,
because order numbers are sequential per branch and day.
"""

import json

from fastapi import APIRouter, Header
from protean.utils.globals import current_domain

from delivery.api.schemas import (
    AssignDeliveryOrderRequest,
    CODPaymentRequest,
    CodReconciliationResponse,
    CompleteDeliveryRequest,
    CreateDeliveryOrderRequest,
    DeliveryBoardEntryResponse,
    DeliveryItemRequest,
    DeliveryItemResponse,
    DeliveryOrderIdResponse,
    DeliveryOrderResponse,
    FailDeliveryRequest,
    FailedDeliveryRequest,
    GeoPointResponse,
    IdResponse,
    IssueResponse,
    ItemHistoryEntryResponse,
    ProofOfDeliveryRequest,
    ProofOfDeliveryResponse,
    ReasonRequest,
    RegisterTransitShipmentRequest,
    ReopenDeliveryRequest,
    ReportIssueRequest,
    ResolveIssueRequest,
    RouteResponse,
    RouteStopResponse,
    StartDeliveryRequest,
    SummaryResponse,
    TrackingLocationRequest,
    TransitShipmentResponse,
    UpdateShipmentETARequest,
    UpdateDeliveryOrderRequest,
)
from delivery.delivery_order.assignment import AssignDeliveryOrder
from delivery.delivery_order.creation import CreateDeliveryOrder
from delivery.delivery_order.details import UpdateDeliveryOrder
from delivery.delivery_order.delivery_order import DeliveryOrder
from delivery.delivery_order.execution import (
    CancelDeliveryOrder,
    CompleteDelivery,
    FailDeliveryOrder,
    ReopenDeliveryOrder,
    StartDelivery,
)
from delivery.delivery_order.issues import ReportDeliveryIssue, ResolveDeliveryIssue
from delivery.delivery_order.items import AddDeliveryItem, RemoveDeliveryItem
from delivery.delivery_order.locking import branch_lock_key, process_exclusively
from delivery.delivery_order.numbering import find_by_order_number, normalize_branch_code
from delivery.delivery_order.proof_of_delivery import (
    RecordCODPayment,
    RecordFailedDelivery,
    RecordItemReturn,
    RecordProofOfDelivery,
)
from delivery.delivery_order.routing import MarkStopArrived, OptimizeRoute
from delivery.delivery_order.tracking import UpdateTrackingLocation
from delivery.projections.cod_reconciliation import CodReconciliationView
from delivery.projections.delivery_board import DeliveryBoardView
from delivery.shipment.eta import RegisterTransitShipment, UpdateShipmentETA
from delivery.shipment.shipment import TransitShipment


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------
def _point(value) -> GeoPointResponse | None:
    if value is None:
        return None
    return GeoPointResponse(longitude=value.longitude, latitude=value.latitude, address=value.address)


def _proof(pod) -> ProofOfDeliveryResponse | None:
    if pod is None:
        return None
    return ProofOfDeliveryResponse(
        delivered_to=pod.delivered_to,
        signature_ref=pod.signature_ref,
        relationship=pod.relationship,
        photos=json.loads(pod.photos) if pod.photos else [],
        cod_collected=bool(pod.cod_collected),
        cod_amount=pod.cod_amount or 0.0,
        payment_method=pod.payment_method,
        receipt_number=pod.receipt_number,
        delivered_at=pod.delivered_at,
    )


def order_response(order: DeliveryOrder) -> DeliveryOrderResponse:
    route = order.route
    summary = order.summary
    return DeliveryOrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        branch_id=str(order.branch_id),
        branch_code=order.branch_code,
        vehicle_id=order.vehicle_id,
        driver_id=order.driver_id,
        helper_id=order.helper_id,
        scheduled_date=order.scheduled_date,
        scheduled_time=order.scheduled_time,
        priority=order.priority,
        notes=order.notes,
        summary=SummaryResponse(
            total_items=summary.total_items,
            delivered_count=summary.delivered_count,
            failed_count=summary.failed_count,
            returned_count=summary.returned_count,
            pending_count=summary.pending_count,
            total_cod_amount=summary.total_cod_amount,
            cod_collected_amount=summary.cod_collected_amount,
        ),
        route=RouteResponse(
            optimized=bool(route is not None and route.optimized),
            optimized_at=route.optimized_at if route is not None else None,
            total_distance_km=(route.total_distance_km or 0.0) if route is not None else 0.0,
            estimated_duration_min=(route.estimated_duration_min or 0) if route is not None else 0,
            actual_start=route.actual_start if route is not None else None,
            actual_end=route.actual_end if route is not None else None,
            actual_duration_min=route.actual_duration_min if route is not None else None,
            stops=[
                RouteStopResponse(
                    stop_id=str(stop.id),
                    sequence=stop.sequence,
                    item_id=str(stop.item_id) if stop.item_id else None,
                    waybill_number=stop.waybill_number,
                    location=_point(stop.location),
                    status=stop.status,
                    estimated_arrival=stop.estimated_arrival,
                    actual_arrival=stop.actual_arrival,
                )
                for stop in order.ordered_stops()
            ],
        ),
        items=[
            DeliveryItemResponse(
                item_id=str(item.id),
                waybill_number=item.waybill_number,
                receiver_name=item.receiver_name,
                status=item.status,
                payment_type=item.payment_type,
                cod_amount=item.cod_amount,
                failure_reason=item.failure_reason,
                return_reason=item.return_reason,
                receiver_location=_point(item.receiver_location),
                proof_of_delivery=_proof(item.proof_of_delivery),
            )
            for item in order.items or []
        ],
        issues=[
            IssueResponse(
                issue_id=str(issue.id),
                kind=issue.kind,
                severity=issue.severity,
                status=issue.status,
                description=issue.description,
                resolution=issue.resolution,
            )
            for issue in order.issues or []
        ],
    )


def _location_fields(location) -> dict:
    if location is None:
        return {}
    return {"longitude": location.longitude, "latitude": location.latitude}


def _item_json(item: DeliveryItemRequest) -> str:
    return json.dumps(item.model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# Delivery Order Router
# ---------------------------------------------------------------------------
delivery_order_router = APIRouter(prefix="/delivery-orders", tags=["delivery-orders"])


@delivery_order_router.post("", status_code=201, response_model=DeliveryOrderIdResponse)
async def create_delivery_order(
    body: CreateDeliveryOrderRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderIdResponse:
    """Create a pending delivery order with its items."""
    branch_code = normalize_branch_code(body.branch_code)
    end = body.end_location
    command = CreateDeliveryOrder(
        branch_id=body.branch_id,
        branch_code=branch_code,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        priority=body.priority,
        notes=body.notes,
        start_longitude=body.start_location.longitude,
        start_latitude=body.start_location.latitude,
        start_address=body.start_location.address,
        end_longitude=end.longitude if end is not None else None,
        end_latitude=end.latitude if end is not None else None,
        end_address=end.address if end is not None else None,
        vehicle_id=body.vehicle_id,
        driver_id=body.driver_id,
        helper_id=body.helper_id,
        items=json.dumps([item.model_dump(exclude_none=True) for item in body.items]),
        performed_by=x_actor_id,
    )
    order_id = process_exclusively(command, branch_lock_key(branch_code))
    order = current_domain.repository_for(DeliveryOrder).get(order_id)
    return DeliveryOrderIdResponse(order_id=order_id, order_number=order.order_number)


@delivery_order_router.get("", response_model=list[DeliveryBoardEntryResponse])
async def list_delivery_board(
    branch_code: str | None = None,
    status: str | None = None,
) -> list[DeliveryBoardEntryResponse]:
    """Dispatch board, optionally filtered by branch and status."""
    filters = {}
    if branch_code:
        filters["branch_code"] = normalize_branch_code(branch_code)
    if status:
        filters["status"] = status
    query = current_domain.repository_for(DeliveryBoardView)._dao.query
    views = (query.filter(**filters) if filters else query).all().items
    return [
        DeliveryBoardEntryResponse(
            order_id=str(v.order_id),
            order_number=v.order_number,
            branch_code=v.branch_code,
            status=v.status,
            driver_id=v.driver_id,
            total_items=v.total_items,
            delivered_count=v.delivered_count,
            failed_count=v.failed_count,
            returned_count=v.returned_count,
        )
        for v in views
    ]


@delivery_order_router.get("/by-number/{order_number}", response_model=DeliveryOrderResponse)
async def get_delivery_order_by_number(order_number: str) -> DeliveryOrderResponse:
    return order_response(find_by_order_number(order_number))


@delivery_order_router.get("/{order_id}", response_model=DeliveryOrderResponse)
async def get_delivery_order(order_id: str) -> DeliveryOrderResponse:
    return order_response(current_domain.repository_for(DeliveryOrder).get(order_id))


@delivery_order_router.patch("/{order_id}", response_model=DeliveryOrderResponse)
async def update_delivery_order(
    order_id: str,
    body: UpdateDeliveryOrderRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    """Edit schedule, priority, notes or locations before the run starts."""
    start = body.start_location
    end = body.end_location
    command = UpdateDeliveryOrder(
        order_id=order_id,
        priority=body.priority,
        notes=body.notes,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        start_longitude=start.longitude if start is not None else None,
        start_latitude=start.latitude if start is not None else None,
        start_address=start.address if start is not None else None,
        end_longitude=end.longitude if end is not None else None,
        end_latitude=end.latitude if end is not None else None,
        end_address=end.address if end is not None else None,
        performed_by=x_actor_id,
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.get("/{order_id}/items/{item_id}/history", response_model=list[ItemHistoryEntryResponse])
async def get_item_history(order_id: str, item_id: str) -> list[ItemHistoryEntryResponse]:
    order = current_domain.repository_for(DeliveryOrder).get(order_id)
    order.find_item(item_id)
    return [
        ItemHistoryEntryResponse(
            status=entry.status,
            note=entry.note,
            performed_by=entry.performed_by,
            occurred_at=entry.occurred_at,
        )
        for entry in order.history_for(item_id)
    ]


@delivery_order_router.get("/{order_id}/cod-reconciliation", response_model=CodReconciliationResponse)
async def get_cod_reconciliation(order_id: str) -> CodReconciliationResponse:
    view = current_domain.repository_for(CodReconciliationView).get(order_id)
    return CodReconciliationResponse(
        order_id=str(view.order_id),
        order_number=view.order_number,
        expected_amount=view.expected_amount,
        collected_amount=view.collected_amount,
        outstanding_amount=view.outstanding_amount,
        collected_items=view.collected_items,
    )


@delivery_order_router.put("/{order_id}/assign", response_model=DeliveryOrderResponse)
async def assign_delivery_order(
    order_id: str,
    body: AssignDeliveryOrderRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    """Assign a vehicle and crew to a pending delivery order."""
    command = AssignDeliveryOrder(
        order_id=order_id,
        vehicle_id=body.vehicle_id,
        driver_id=body.driver_id,
        helper_id=body.helper_id,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        performed_by=x_actor_id,
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/start", response_model=DeliveryOrderResponse)
async def start_delivery(
    order_id: str,
    body: StartDeliveryRequest | None = None,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    location = body.location if body else None
    command = StartDelivery(
        order_id=order_id,
        address=location.address if location is not None else None,
        performed_by=x_actor_id,
        **_location_fields(location),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/complete", response_model=DeliveryOrderResponse)
async def complete_delivery(
    order_id: str,
    body: CompleteDeliveryRequest | None = None,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    """Close the run; every item must be delivered, failed or returned."""
    command = CompleteDelivery(
        order_id=order_id,
        notes=body.notes if body else None,
        performed_by=x_actor_id,
        **_location_fields(body.location if body else None),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/cancel", response_model=DeliveryOrderResponse)
async def cancel_delivery_order(
    order_id: str,
    body: ReasonRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = CancelDeliveryOrder(order_id=order_id, reason=body.reason, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/fail", response_model=DeliveryOrderResponse)
async def fail_delivery_order(
    order_id: str,
    body: FailDeliveryRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = FailDeliveryOrder(
        order_id=order_id,
        reason=body.reason,
        performed_by=x_actor_id,
        **_location_fields(body.location),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/reopen", response_model=DeliveryOrderResponse)
async def reopen_delivery_order(
    order_id: str,
    body: ReopenDeliveryRequest | None = None,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = ReopenDeliveryOrder(order_id=order_id, notes=body.notes if body else None, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.post("/{order_id}/items", status_code=201, response_model=DeliveryOrderResponse)
async def add_delivery_item(
    order_id: str,
    body: DeliveryItemRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = AddDeliveryItem(order_id=order_id, item=_item_json(body), performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.delete("/{order_id}/items/{item_id}", response_model=DeliveryOrderResponse)
async def remove_delivery_item(
    order_id: str,
    item_id: str,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = RemoveDeliveryItem(order_id=order_id, item_id=item_id, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/route/optimize", response_model=DeliveryOrderResponse)
async def optimize_route(order_id: str, x_actor_id: str = Header(default="system")) -> DeliveryOrderResponse:
    """Sequence stops by nearest neighbour and recompute distance and ETAs."""
    command = OptimizeRoute(order_id=order_id, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/stops/{stop_id}/arrive", response_model=DeliveryOrderResponse)
async def mark_stop_arrived(
    order_id: str,
    stop_id: str,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = MarkStopArrived(order_id=order_id, stop_id=stop_id, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/items/{item_id}/proof-of-delivery", response_model=DeliveryOrderResponse)
async def record_proof_of_delivery(
    order_id: str,
    item_id: str,
    body: ProofOfDeliveryRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    """Capture proof of delivery for an item."""
    command = RecordProofOfDelivery(
        order_id=order_id,
        item_id=item_id,
        delivered_to=body.delivered_to,
        relationship=body.relationship,
        id_number=body.id_number,
        signature_ref=body.signature_ref,
        photos=json.dumps(body.photos),
        notes=body.notes,
        cod_collected=body.cod_collected,
        cod_amount=body.cod_amount,
        payment_method=body.payment_method,
        receipt_number=body.receipt_number,
        performed_by=x_actor_id,
        **_location_fields(body.location),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/items/{item_id}/cod-payment", response_model=DeliveryOrderResponse)
async def record_cod_payment(
    order_id: str,
    item_id: str,
    body: CODPaymentRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = RecordCODPayment(
        order_id=order_id,
        item_id=item_id,
        amount=body.amount,
        payment_method=body.payment_method,
        receipt_number=body.receipt_number,
        performed_by=x_actor_id,
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/items/{item_id}/failed-attempt", response_model=DeliveryOrderResponse)
async def record_failed_delivery(
    order_id: str,
    item_id: str,
    body: FailedDeliveryRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = RecordFailedDelivery(
        order_id=order_id,
        item_id=item_id,
        reason=body.reason,
        performed_by=x_actor_id,
        **_location_fields(body.location),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/items/{item_id}/return", response_model=DeliveryOrderResponse)
async def record_item_return(
    order_id: str,
    item_id: str,
    body: ReasonRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = RecordItemReturn(order_id=order_id, item_id=item_id, reason=body.reason, performed_by=x_actor_id)
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.post("/{order_id}/tracking", response_model=DeliveryOrderResponse)
async def update_tracking_location(
    order_id: str,
    body: TrackingLocationRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    """Record a live vehicle position."""
    command = UpdateTrackingLocation(order_id=order_id, performed_by=x_actor_id, **body.model_dump())
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.post("/{order_id}/issues", status_code=201, response_model=DeliveryOrderResponse)
async def report_issue(
    order_id: str,
    body: ReportIssueRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = ReportDeliveryIssue(
        order_id=order_id,
        kind=body.kind,
        description=body.description,
        severity=body.severity,
        performed_by=x_actor_id,
        **_location_fields(body.location),
    )
    return order_response(process_exclusively(command, order_id))


@delivery_order_router.put("/{order_id}/issues/{issue_id}/resolve", response_model=DeliveryOrderResponse)
async def resolve_issue(
    order_id: str,
    issue_id: str,
    body: ResolveIssueRequest,
    x_actor_id: str = Header(default="system"),
) -> DeliveryOrderResponse:
    command = ResolveDeliveryIssue(
        order_id=order_id,
        issue_id=issue_id,
        resolution=body.resolution,
        performed_by=x_actor_id,
    )
    return order_response(process_exclusively(command, order_id))


# ---------------------------------------------------------------------------
# Transit Shipment Router
# ---------------------------------------------------------------------------
transit_shipment_router = APIRouter(prefix="/transit-shipments", tags=["transit-shipments"])


def _shipment_response(shipment: TransitShipment) -> TransitShipmentResponse:
    return TransitShipmentResponse(
        shipment_id=str(shipment.id),
        shipment_number=shipment.shipment_number,
        estimated_arrival=shipment.estimated_arrival,
        revision_count=len(shipment.eta_revisions or []),
    )


@transit_shipment_router.post("", status_code=201, response_model=IdResponse)
async def register_transit_shipment(
    body: RegisterTransitShipmentRequest,
    x_actor_id: str = Header(default="system"),
) -> IdResponse:
    command = RegisterTransitShipment(
        shipment_number=body.shipment_number,
        origin_branch_id=body.origin_branch_id,
        destination_branch_id=body.destination_branch_id,
        estimated_arrival=body.estimated_arrival,
        performed_by=x_actor_id,
    )
    result = current_domain.process(command, asynchronous=False)
    return IdResponse(id=result)


@transit_shipment_router.get("/{shipment_id}", response_model=TransitShipmentResponse)
async def get_transit_shipment(shipment_id: str) -> TransitShipmentResponse:
    return _shipment_response(current_domain.repository_for(TransitShipment).get(shipment_id))


@transit_shipment_router.put("/{shipment_id}/eta", response_model=TransitShipmentResponse)
async def update_shipment_eta(
    shipment_id: str,
    body: UpdateShipmentETARequest,
    x_actor_id: str = Header(default="system"),
) -> TransitShipmentResponse:
    """Revise the expected arrival of a transit shipment."""
    command = UpdateShipmentETA(
        shipment_id=shipment_id,
        new_eta=body.new_eta,
        reason=body.reason,
        performed_by=x_actor_id,
    )
    return _shipment_response(process_exclusively(command, shipment_id))
