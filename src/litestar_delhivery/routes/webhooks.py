"""Carrier webhook endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from litestar import Controller, Request, post
from litestar.params import Dependency

from litestar_delhivery.schemas import WebhookResponse
from litestar_delhivery.webhooks import WebhookIngestor

logger = logging.getLogger(__name__)


class WebhookController(Controller):
    """Delhivery status and proof-of-delivery pushes."""

    path = "/webhooks"
    tags = ["webhooks"]

    @post("/delhivery", status_code=200)
    async def handle_webhook(
        self,
        request: Request,
        ingestor: Annotated[
            WebhookIngestor, Dependency(skip_validation=True)
        ],
    ) -> WebhookResponse:
        """Acknowledge every delivery; the outcome is in the body."""
        raw_body = await request.body()
        result = await ingestor.ingest(raw_body, dict(request.headers))
        return WebhookResponse(**result)

    @post("/delhivery/pod", status_code=200)
    async def handle_pod_webhook(
        self,
        request: Request,
        ingestor: Annotated[
            WebhookIngestor, Dependency(skip_validation=True)
        ],
    ) -> WebhookResponse:
        """Store proof-of-delivery links for a delivered shipment."""
        raw_body = await request.body()
        result = await ingestor.ingest_pod(raw_body, dict(request.headers))
        return WebhookResponse(**result)
