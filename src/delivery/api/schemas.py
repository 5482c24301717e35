"""Pydantic API schemas for the Delivery domain.

These are the external API contracts, kept separate from domain commands.
The API layer translates between these schemas and domain commands.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class GeoPointRequest(BaseModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)
    address: str | None = None


class ParcelDimensionsRequest(BaseModel):
    length: float | None = None
    width: float | None = None
    height: float | None = None


class DeliveryItemRequest(BaseModel):
    shipment_order_ref: str
    waybill_number: str
    receiver_name: str
    receiver_address: str
    receiver_phone: str
    receiver_location: GeoPointRequest | None = None
    description: str | None = None
    weight_kg: float = 0.0
    dimensions: ParcelDimensionsRequest | None = None
    quantity: int = 1
    special_handling_notes: str | None = None
    payment_type: str = "CASH"
    cod_amount: float | None = None


class CreateDeliveryOrderRequest(BaseModel):
    branch_id: str
    branch_code: str
    scheduled_date: date
    scheduled_time: str | None = None
    priority: str | None = None
    notes: str | None = None
    start_location: GeoPointRequest
    end_location: GeoPointRequest | None = None
    vehicle_id: str | None = None
    driver_id: str | None = None
    helper_id: str | None = None
    items: list[DeliveryItemRequest]


class AssignDeliveryOrderRequest(BaseModel):
    vehicle_id: str
    driver_id: str
    helper_id: str | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None


class UpdateDeliveryOrderRequest(BaseModel):
    priority: str | None = None
    notes: str | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    start_location: GeoPointRequest | None = None
    end_location: GeoPointRequest | None = None


class StartDeliveryRequest(BaseModel):
    location: GeoPointRequest | None = None


class CompleteDeliveryRequest(BaseModel):
    location: GeoPointRequest | None = None
    notes: str | None = None


class ReasonRequest(BaseModel):
    reason: str


class FailDeliveryRequest(BaseModel):
    reason: str
    location: GeoPointRequest | None = None


class ReopenDeliveryRequest(BaseModel):
    notes: str | None = None


class ProofOfDeliveryRequest(BaseModel):
    delivered_to: str
    relationship: str | None = None
    id_number: str | None = None
    signature_ref: str
    photos: list[str] = Field(default_factory=list)
    notes: str | None = None
    location: GeoPointRequest | None = None
    cod_collected: bool = False
    cod_amount: float | None = None
    payment_method: str | None = None
    receipt_number: str | None = None


class CODPaymentRequest(BaseModel):
    amount: float | None = None
    payment_method: str
    receipt_number: str | None = None


class FailedDeliveryRequest(BaseModel):
    reason: str
    location: GeoPointRequest | None = None


class TrackingLocationRequest(BaseModel):
    longitude: float
    latitude: float
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    address: str | None = None
    provider: str | None = None


class ReportIssueRequest(BaseModel):
    kind: str
    description: str
    severity: str | None = None
    location: GeoPointRequest | None = None


class ResolveIssueRequest(BaseModel):
    resolution: str


class RegisterTransitShipmentRequest(BaseModel):
    shipment_number: str
    origin_branch_id: str
    destination_branch_id: str
    estimated_arrival: datetime | None = None


class UpdateShipmentETARequest(BaseModel):
    new_eta: datetime
    reason: str | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class DeliveryOrderIdResponse(BaseModel):
    order_id: str
    order_number: str


class GeoPointResponse(BaseModel):
    longitude: float
    latitude: float
    address: str | None = None


class ProofOfDeliveryResponse(BaseModel):
    delivered_to: str
    signature_ref: str
    relationship: str | None = None
    photos: list[str] = Field(default_factory=list)
    cod_collected: bool = False
    cod_amount: float = 0.0
    payment_method: str | None = None
    receipt_number: str | None = None
    delivered_at: datetime | None = None


class DeliveryItemResponse(BaseModel):
    item_id: str
    waybill_number: str
    receiver_name: str
    status: str
    payment_type: str
    cod_amount: float | None = None
    failure_reason: str | None = None
    return_reason: str | None = None
    receiver_location: GeoPointResponse | None = None
    proof_of_delivery: ProofOfDeliveryResponse | None = None


class RouteStopResponse(BaseModel):
    stop_id: str
    sequence: int
    item_id: str | None = None
    waybill_number: str | None = None
    location: GeoPointResponse
    status: str
    estimated_arrival: datetime | None = None
    actual_arrival: datetime | None = None


class RouteResponse(BaseModel):
    optimized: bool = False
    optimized_at: datetime | None = None
    total_distance_km: float = 0.0
    estimated_duration_min: int = 0
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    actual_duration_min: int | None = None
    stops: list[RouteStopResponse] = Field(default_factory=list)


class SummaryResponse(BaseModel):
    total_items: int
    delivered_count: int
    failed_count: int
    returned_count: int
    pending_count: int
    total_cod_amount: float
    cod_collected_amount: float


class IssueResponse(BaseModel):
    issue_id: str
    kind: str
    severity: str
    status: str
    description: str
    resolution: str | None = None


class DeliveryOrderResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    branch_id: str
    branch_code: str
    vehicle_id: str | None = None
    driver_id: str | None = None
    helper_id: str | None = None
    scheduled_date: date | None = None
    scheduled_time: str | None = None
    priority: str
    notes: str | None = None
    summary: SummaryResponse
    route: RouteResponse
    items: list[DeliveryItemResponse]
    issues: list[IssueResponse] = Field(default_factory=list)


class ItemHistoryEntryResponse(BaseModel):
    status: str
    note: str | None = None
    performed_by: str
    occurred_at: datetime


class CodReconciliationResponse(BaseModel):
    order_id: str
    order_number: str
    expected_amount: float
    collected_amount: float
    outstanding_amount: float
    collected_items: int


class DeliveryBoardEntryResponse(BaseModel):
    order_id: str
    order_number: str
    branch_code: str
    status: str
    driver_id: str | None = None
    total_items: int
    delivered_count: int
    failed_count: int
    returned_count: int


class TransitShipmentResponse(BaseModel):
    shipment_id: str
    shipment_number: str
    estimated_arrival: datetime | None = None
    revision_count: int


class IdResponse(BaseModel):
    id: str
