"""Webhook ingestion: verify, parse, detect NDR, apply once."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.exceptions import (
    InvalidPayloadError,
    InvalidSignatureError,
)
from litestar_delhivery.lifecycle import (
    APPLIED,
    DUPLICATE,
    STALE,
    ApplyResult,
    ShipmentLifecycle,
)
from litestar_delhivery.models import WebhookEvent
from litestar_delhivery.payloads import parse_carrier_datetime, sanitize_awb
from litestar_delhivery.protocols import CallbackRetryStore
from litestar_delhivery.retry import enqueue_callback_retry

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-delhivery-signature"

# Webhook response statuses
ACCEPTED = "accepted"
IGNORED = "ignored"
DUPLICATE_STATUS = "duplicate"
REJECTED = "rejected"
ERROR = "error"


def _first(*values: Any) -> str:
    for value in values:
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _web_url(value: Any) -> str:
    url = _first(value)
    try:
        scheme = urlsplit(url).scheme.lower()
    except ValueError:
        return ""
    return url if scheme in ("http", "https") else ""


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def detect_ndr(
    status_type: str,
    nsl_code: str,
    instructions: str,
    *,
    code_prefixes: list[str],
    keywords: list[str],
) -> bool:
    """Heuristic non-delivery detection for undelivered scans."""
    if status_type.strip().upper() != "UD":
        return False
    code = nsl_code.strip().upper()
    prefixes = [prefix.upper() for prefix in code_prefixes if prefix]
    if any(code.startswith(prefix) for prefix in prefixes):
        return True
    text = instructions.lower()
    return any(keyword.lower() in text for keyword in keywords if keyword)


class WebhookIngestor:
    """Entry point for carrier status pushes."""

    def __init__(
        self,
        config: DelhiveryConfig,
        lifecycle: ShipmentLifecycle,
        retry_store: CallbackRetryStore | None = None,
    ) -> None:
        self.config = config
        self.lifecycle = lifecycle
        self.retry_store = retry_store

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        """Check the HMAC-SHA256 hex digest of the raw body.

        Skipped entirely when no secret is configured.
        """
        secret = self.config.signing_secret
        if not secret:
            return
        expected = compute_signature(raw_body, secret)
        if not signature or not hmac.compare_digest(
            expected, signature.strip().lower()
        ):
            raise InvalidSignatureError()

    def parse_payload(self, data: Any) -> WebhookEvent:
        """Normalise the historical payload shapes into a WebhookEvent."""
        if not isinstance(data, dict):
            raise InvalidPayloadError("Webhook payload must be a JSON object")
        shipment = data.get("Shipment")
        if not isinstance(shipment, dict):
            shipment = data
        status = shipment.get("Status")
        if not isinstance(status, dict):
            status = {}

        awb = sanitize_awb(
            _first(
                shipment.get("AWB"),
                shipment.get("waybill"),
                shipment.get("wbn"),
                data.get("waybill"),
                data.get("awb"),
            )
        )
        if not awb:
            raise InvalidPayloadError("Webhook missing AWB")

        status_type = _first(status.get("StatusType"), data.get("status_type"))
        nsl_code = _first(
            shipment.get("NSLCode"),
            data.get("nsl_code"),
            data.get("status_code"),
        )
        instructions = _first(
            status.get("Instructions"),
            data.get("instructions"),
            data.get("remarks"),
        )
        return WebhookEvent(
            awb=awb,
            status_type=status_type.upper(),
            status=_first(status.get("Status"), data.get("status")),
            status_code=nsl_code,
            status_datetime=parse_carrier_datetime(
                _first(status.get("StatusDateTime"), data.get("timestamp"))
            ),
            location=_first(
                status.get("StatusLocation"), data.get("location")
            ),
            instructions=instructions,
            reference_no=_first(
                shipment.get("ReferenceNo"), data.get("ref_id")
            ),
            expected_delivery=_first(shipment.get("ExpectedDeliveryDate")),
            is_ndr=detect_ndr(
                status_type,
                nsl_code,
                instructions,
                code_prefixes=self.config.ndr_code_prefixes,
                keywords=self.config.ndr_keywords,
            ),
            raw=data,
        )

    async def process(self, payload: Any) -> ApplyResult:
        """Parse and apply an already-verified payload."""
        event = self.parse_payload(payload)
        return await self.lifecycle.apply_event(event)

    async def ingest(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> dict[str, Any]:
        """Handle one delivery; never raises.

        Returns a body for a 200 response whose ``status`` is one of
        accepted, ignored, duplicate, rejected or error.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        try:
            self.verify_signature(raw_body, lowered.get(SIGNATURE_HEADER))
        except InvalidSignatureError as exc:
            logger.warning("Rejected Delhivery webhook: %s", exc)
            return {"status": REJECTED, "detail": str(exc)}

        try:
            payload = json.loads(raw_body or b"null")
        except ValueError:
            logger.warning("Unparsable Delhivery webhook body")
            return {"status": ERROR, "detail": "Invalid webhook payload."}

        try:
            event = self.parse_payload(payload)
        except InvalidPayloadError as exc:
            logger.warning("Invalid Delhivery webhook payload: %s", exc)
            return {"status": ERROR, "detail": str(exc)}

        try:
            result = await self.lifecycle.apply_event(event)
        except Exception as exc:
            logger.exception("Applying webhook for %s failed", event.awb)
            queued = await self._queue_retry(event, payload, headers, exc)
            return {
                "status": ERROR,
                "awb": event.awb,
                "detail": "Status update could not be applied.",
                "queued": queued,
            }

        if result.outcome in (APPLIED, STALE):
            status = ACCEPTED
        elif result.outcome == DUPLICATE:
            status = DUPLICATE_STATUS
        else:
            status = IGNORED
        body = {"status": status, **result.as_dict()}
        body["is_ndr"] = event.is_ndr
        return body

    async def _queue_retry(
        self,
        event: WebhookEvent,
        payload: Any,
        headers: Mapping[str, str],
        exc: Exception,
    ) -> bool:
        if not self.config.retry_enabled or self.retry_store is None:
            return False
        try:
            await enqueue_callback_retry(
                self.retry_store,
                awb=event.awb,
                event_key=event.retry_key,
                payload=payload,
                headers=dict(headers),
                reason=str(exc),
            )
        except Exception:
            logger.exception(
                "Could not queue webhook retry for %s", event.awb
            )
            return False
        return True

    async def ingest_pod(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> dict[str, Any]:
        """Store proof-of-delivery links pushed by the carrier.

        Signed and answered like :meth:`ingest`; an AWB with no local
        shipment is acknowledged as ignored.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        try:
            self.verify_signature(raw_body, lowered.get(SIGNATURE_HEADER))
        except InvalidSignatureError as exc:
            logger.warning("Rejected Delhivery POD webhook: %s", exc)
            return {"status": REJECTED, "detail": str(exc)}

        try:
            payload = json.loads(raw_body or b"null")
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not payload:
            logger.warning("Invalid Delhivery POD webhook body")
            return {"status": ERROR, "detail": "Invalid webhook payload."}

        awb = sanitize_awb(_first(payload.get("waybill"), payload.get("awb")))
        if not awb:
            return {"status": ERROR, "detail": "Webhook missing AWB"}

        try:
            shipment = await self.lifecycle.record_proof_of_delivery(
                awb,
                pod_url=_web_url(payload.get("pod_url")),
                signature_url=_web_url(payload.get("signature_url")),
            )
        except Exception:
            logger.exception("Storing POD for %s failed", awb)
            return {
                "status": ERROR,
                "awb": awb,
                "detail": "Proof of delivery could not be stored.",
            }
        if shipment is None:
            return {
                "status": IGNORED,
                "awb": awb,
                "detail": "No shipment for this AWB.",
            }
        return {
            "status": ACCEPTED,
            "awb": awb,
            "pod_url": shipment.pod_url,
            "signature_url": shipment.signature_url,
        }
