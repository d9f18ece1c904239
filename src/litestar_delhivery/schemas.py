"""Request/response schemas for HTTP endpoints."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from litestar_delhivery.classifier import Classification
from litestar_delhivery.models import (
    BulkManifestResult,
    CancelResult,
    PickupResult,
    ServiceabilityResult,
    Shipment,
    TrackingSnapshot,
)


class ManifestRequest(BaseModel):
    """Payload for manifesting an order."""

    order_id: str


class BulkManifestRequest(BaseModel):
    order_ids: list[str] = Field(min_length=1)


class UpdateShipmentRequest(BaseModel):
    """Consignee / package edits; payment fields are rejected."""

    updates: dict[str, Any]


class PaymentModeRequest(BaseModel):
    mode: str
    cod_amount: Decimal | None = None


class EwaybillRequest(BaseModel):
    ewbn: str


class NDRActionRequest(BaseModel):
    """NDR resolution: ``RE-ATTEMPT``, ``DEFER_DLV`` or ``EDIT_DETAILS``."""

    action: str
    deferred_date: date | None = None
    name: str = ""
    phone: str = ""
    address: str = ""


class ReturnRequest(BaseModel):
    qc_enabled: bool = False


class RefreshRequest(BaseModel):
    awbs: list[str] = Field(min_length=1)


class PickupRequestBody(BaseModel):
    pickup_date: date | None = None
    pickup_time: str | None = None
    expected_package_count: int = 1


class ShipmentResponse(BaseModel):
    """Serialized shipment record with its current classification."""

    id: str
    order_id: str
    awb: str
    order_reference: str
    state: str
    status_type: str
    status: str
    status_code: str
    last_location: str
    last_update: str | None
    expected_delivery: str
    is_ndr: bool
    ndr_reason: str
    payment_mode: str
    cod_amount: str
    ewaybill: str
    return_awb: str
    is_return: bool
    pod_url: str = ""
    signature_url: str = ""
    pod_received_at: str | None = None
    classification: dict[str, Any]

    @classmethod
    def from_shipment(
        cls, shipment: Shipment, classification: Classification
    ) -> ShipmentResponse:
        return cls(
            id=str(shipment.id),
            order_id=shipment.order_id,
            awb=shipment.awb,
            order_reference=shipment.order_reference,
            state=str(shipment.state),
            status_type=shipment.status_type,
            status=shipment.status,
            status_code=shipment.status_code,
            last_location=shipment.last_location,
            last_update=(
                shipment.last_update.isoformat()
                if shipment.last_update
                else None
            ),
            expected_delivery=shipment.expected_delivery,
            is_ndr=shipment.is_ndr,
            ndr_reason=shipment.ndr_reason,
            payment_mode=str(shipment.payment_mode),
            cod_amount=str(shipment.cod_amount),
            ewaybill=shipment.ewaybill,
            return_awb=shipment.return_awb,
            is_return=shipment.is_return,
            pod_url=shipment.pod_url,
            signature_url=shipment.signature_url,
            pod_received_at=(
                shipment.pod_received_at.isoformat()
                if shipment.pod_received_at
                else None
            ),
            classification=classification.as_dict(),
        )


class BulkManifestResponse(BaseModel):
    """Per-order outcome of a bulk manifest."""

    manifested: list[ShipmentResponse]
    already_manifested: list[str]
    skipped: dict[str, str]
    failed: dict[str, str]

    @classmethod
    def from_result(
        cls,
        result: BulkManifestResult,
        classify: Callable[[Shipment], Classification],
    ) -> BulkManifestResponse:
        return cls(
            manifested=[
                ShipmentResponse.from_shipment(shipment, classify(shipment))
                for shipment in result.manifested
            ],
            already_manifested=list(result.already_manifested),
            skipped=dict(result.skipped),
            failed=dict(result.failed),
        )


class CancelResponse(BaseModel):
    awb: str
    refund: bool
    rto_triggered: bool
    note: str

    @classmethod
    def from_result(cls, result: CancelResult) -> CancelResponse:
        return cls(
            awb=result.awb,
            refund=result.refund,
            rto_triggered=result.rto_triggered,
            note=result.note,
        )


class ScanResponse(BaseModel):
    status: str
    datetime: str
    location: str
    status_type: str
    remarks: str


class TrackingResponse(BaseModel):
    awb: str
    status: str
    status_type: str
    status_code: str
    status_datetime: str
    status_location: str
    instructions: str
    expected_delivery: str
    state: str
    scans: list[ScanResponse]

    @classmethod
    def from_snapshot(cls, snapshot: TrackingSnapshot) -> TrackingResponse:
        return cls(
            awb=snapshot.awb,
            status=snapshot.status,
            status_type=snapshot.status_type,
            status_code=snapshot.status_code,
            status_datetime=snapshot.status_datetime,
            status_location=snapshot.status_location,
            instructions=snapshot.instructions,
            expected_delivery=snapshot.expected_delivery,
            state=str(snapshot.classification.state),
            scans=[ScanResponse(**scan.as_dict()) for scan in snapshot.scans],
        )


class ServiceabilityResponse(BaseModel):
    pincode: str
    is_serviceable: bool
    has_embargo: bool
    remarks: list[str]

    @classmethod
    def from_result(
        cls, result: ServiceabilityResult
    ) -> ServiceabilityResponse:
        return cls(**result.as_dict())


class PickupResponse(BaseModel):
    pickup_id: str
    pickup_date: date
    pickup_time: str
    expected_package_count: int
    reused: bool

    @classmethod
    def from_result(cls, result: PickupResult) -> PickupResponse:
        return cls(
            pickup_id=result.pickup_id,
            pickup_date=result.pickup_date,
            pickup_time=result.pickup_time,
            expected_package_count=result.expected_package_count,
            reused=result.reused,
        )


class WebhookResponse(BaseModel):
    """Acknowledgement body; the carrier always receives HTTP 200."""

    status: str
    awb: str | None = None
    outcome: str | None = None
    state: str | None = None
    previous_state: str | None = None
    ndr_detected: bool = False
    order_status: str | None = None
    is_ndr: bool = False
    queued: bool = False
    reason: str = ""
    detail: str = ""
    pod_url: str = ""
    signature_url: str = ""
