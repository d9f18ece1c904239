"""Serviceability and pickup endpoints."""

from __future__ import annotations

from typing import Annotated

from litestar import Controller, get, post
from litestar.params import Dependency

from litestar_delhivery.operations import ShipmentOperations
from litestar_delhivery.schemas import (
    PickupRequestBody,
    PickupResponse,
    ServiceabilityResponse,
)


class ServiceabilityController(Controller):
    path = "/serviceability"
    tags = ["serviceability"]

    @get("/{pincode:str}")
    async def check_serviceability(
        self,
        pincode: str,
        operations: Annotated[
            ShipmentOperations, Dependency(skip_validation=True)
        ],
    ) -> ServiceabilityResponse:
        """Whether Delhivery delivers to a pincode (cached)."""
        result = await operations.check_serviceability(pincode)
        return ServiceabilityResponse.from_result(result)


class PickupController(Controller):
    path = "/pickups"
    tags = ["pickups"]

    @post("/")
    async def request_pickup(
        self,
        data: PickupRequestBody,
        operations: Annotated[
            ShipmentOperations, Dependency(skip_validation=True)
        ],
    ) -> PickupResponse:
        """Request a pickup at the configured warehouse."""
        result = await operations.request_pickup(
            data.pickup_date,
            data.pickup_time,
            data.expected_package_count,
        )
        return PickupResponse.from_result(result)
