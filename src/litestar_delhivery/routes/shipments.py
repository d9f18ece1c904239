"""Shipment endpoints."""

from __future__ import annotations

import logging
from typing import Annotated, Any, ClassVar

from litestar import Controller, Response, get, post
from litestar.params import Dependency

from litestar_delhivery.operations import ShipmentOperations
from litestar_delhivery.schemas import (
    BulkManifestRequest,
    BulkManifestResponse,
    CancelResponse,
    EwaybillRequest,
    ManifestRequest,
    NDRActionRequest,
    PaymentModeRequest,
    RefreshRequest,
    ReturnRequest,
    ShipmentResponse,
    TrackingResponse,
    UpdateShipmentRequest,
)

logger = logging.getLogger(__name__)

OperationsDep = Annotated[
    ShipmentOperations, Dependency(skip_validation=True)
]


def _respond(
    operations: ShipmentOperations, shipment: Any
) -> ShipmentResponse:
    return ShipmentResponse.from_shipment(
        shipment, operations.classify(shipment)
    )


class ShipmentController(Controller):
    """Shipment lifecycle endpoints."""

    path = "/shipments"
    tags: ClassVar[list[str]] = ["shipments"]

    @get("/health")
    async def shipments_health(self) -> dict[str, str]:
        """Healthcheck endpoint for shipment routes."""
        return {"status": "ok"}

    @post("/")
    async def manifest_order(
        self, data: ManifestRequest, operations: OperationsDep
    ) -> ShipmentResponse:
        """Manifest an order and return the stored shipment."""
        shipment = await operations.manifest(data.order_id)
        return _respond(operations, shipment)

    @post("/bulk")
    async def manifest_orders(
        self, data: BulkManifestRequest, operations: OperationsDep
    ) -> BulkManifestResponse:
        """Manifest several orders with one carrier call."""
        result = await operations.manifest_many(data.order_ids)
        return BulkManifestResponse.from_result(result, operations.classify)

    @post("/refresh", status_code=200)
    async def refresh_statuses(
        self, data: RefreshRequest, operations: OperationsDep
    ) -> list[dict[str, Any]]:
        """Poll tracking for the given AWBs and apply the results."""
        results = await operations.refresh_statuses(data.awbs)
        return [result.as_dict() for result in results]

    @get("/{awb:str}")
    async def get_shipment(
        self, awb: str, operations: OperationsDep
    ) -> ShipmentResponse:
        shipment = await operations.get_shipment(awb)
        return _respond(operations, shipment)

    @post("/{awb:str}/cancel", status_code=200)
    async def cancel_shipment(
        self, awb: str, operations: OperationsDep
    ) -> CancelResponse:
        result = await operations.cancel(awb)
        return CancelResponse.from_result(result)

    @post("/{awb:str}/update", status_code=200)
    async def update_shipment(
        self,
        awb: str,
        data: UpdateShipmentRequest,
        operations: OperationsDep,
    ) -> dict[str, Any]:
        result = await operations.update_shipment(awb, data.updates)
        return {"awb": result["awb"], "updated": result["updated"]}

    @post("/{awb:str}/payment-mode", status_code=200)
    async def convert_payment_mode(
        self,
        awb: str,
        data: PaymentModeRequest,
        operations: OperationsDep,
    ) -> ShipmentResponse:
        shipment = await operations.convert_payment_mode(
            awb, data.mode, data.cod_amount
        )
        return _respond(operations, shipment)

    @post("/{awb:str}/ewaybill", status_code=200)
    async def update_ewaybill(
        self,
        awb: str,
        data: EwaybillRequest,
        operations: OperationsDep,
    ) -> ShipmentResponse:
        shipment = await operations.update_ewaybill(awb, data.ewbn)
        return _respond(operations, shipment)

    @post("/{awb:str}/ndr", status_code=200)
    async def ndr_action(
        self,
        awb: str,
        data: NDRActionRequest,
        operations: OperationsDep,
    ) -> dict[str, Any]:
        """Resolve a non-delivery report."""
        result = await operations.ndr_action(
            awb,
            data.action,
            deferred_date=data.deferred_date,
            name=data.name,
            phone=data.phone,
            address=data.address,
        )
        return {"awb": result["awb"], "action": result["action"]}

    @post("/{awb:str}/return")
    async def create_return(
        self,
        awb: str,
        data: ReturnRequest,
        operations: OperationsDep,
    ) -> ShipmentResponse:
        """Book a reverse pickup for a delivered shipment."""
        shipment = await operations.create_return(
            awb, qc_enabled=data.qc_enabled
        )
        return _respond(operations, shipment)

    @get("/{awb:str}/tracking")
    async def track_shipment(
        self, awb: str, operations: OperationsDep
    ) -> TrackingResponse:
        snapshot = await operations.track(awb)
        return TrackingResponse.from_snapshot(snapshot)

    @get("/{awb:str}/documents/{doc_type:str}")
    async def fetch_document(
        self, awb: str, doc_type: str, operations: OperationsDep
    ) -> dict[str, Any]:
        result = await operations.fetch_document(awb, doc_type)
        return {
            "awb": result["awb"],
            "doc_type": result["doc_type"],
            "url": result["url"],
        }

    @get("/{awb:str}/label")
    async def packing_slip(
        self, awb: str, operations: OperationsDep
    ) -> Response:
        """Shipping label as PDF, or its download link."""
        slip = await operations.packing_slip(awb)
        if slip.content:
            return Response(
                content=slip.content,
                media_type=slip.content_type,
                headers={
                    "Content-Disposition": (
                        f'inline; filename="label-{slip.awb}.pdf"'
                    )
                },
            )
        return Response(content={"awb": slip.awb, "url": slip.url})
