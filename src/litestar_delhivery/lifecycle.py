"""Applies carrier status events to local shipment records."""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from litestar_delhivery.classifier import TERMINAL_STATES, classify, state_rank
from litestar_delhivery.enums import CanonicalState, OrderStatus
from litestar_delhivery.locks import KeyedLocks
from litestar_delhivery.models import Shipment, WebhookEvent
from litestar_delhivery.protocols import OrderManagement, ShipmentRepository

logger = logging.getLogger(__name__)

ORDER_STATUS_BY_STATE: dict[CanonicalState, OrderStatus] = {
    CanonicalState.DELIVERED: OrderStatus.COMPLETED,
    CanonicalState.RETURN_COMPLETED: OrderStatus.CANCELLED,
    CanonicalState.CANCELLED: OrderStatus.CANCELLED,
    CanonicalState.REVERSE_PICKUP_COMPLETED: OrderStatus.COMPLETED,
}

NDR_CLEARING_STATES = TERMINAL_STATES | {CanonicalState.RETURN_IN_PROGRESS}

NDR_DETECTED_EVENT = "ndr.detected"

# Outbox entry kinds
ORDER_STATUS_EFFECT = "order_status"
NOTIFY_EFFECT = "notify"

# ApplyResult.outcome values
APPLIED = "applied"
DUPLICATE = "duplicate"
OUTDATED = "outdated"
REGRESSION = "regression"
STALE = "stale"
UNKNOWN_AWB = "unknown_awb"


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class ApplyResult:
    awb: str
    outcome: str
    state: CanonicalState | None = None
    previous_state: CanonicalState | None = None
    ndr_detected: bool = False
    order_status: str | None = None
    reason: str = ""

    @property
    def changed(self) -> bool:
        return self.outcome == APPLIED

    def as_dict(self) -> dict[str, Any]:
        return {
            "awb": self.awb,
            "outcome": self.outcome,
            "state": str(self.state) if self.state else None,
            "previous_state": (
                str(self.previous_state) if self.previous_state else None
            ),
            "ndr_detected": self.ndr_detected,
            "order_status": self.order_status,
            "reason": self.reason,
        }


class ShipmentLifecycle:
    """Single-writer state updates for shipments, keyed by AWB.

    Webhooks and the polling path both funnel through
    :meth:`apply_event`; shipment operations take the same per-AWB lock
    via :meth:`hold`, so a manual cancel and a delivery push never
    interleave.
    """

    def __init__(
        self,
        repository: ShipmentRepository,
        order_management: OrderManagement | None = None,
        *,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.repository = repository
        self.order_management = order_management
        self.locks = locks or KeyedLocks()

    def hold(self, awb: str) -> AbstractAsyncContextManager[None]:
        return self.locks.hold(f"awb:{awb}")

    async def apply_event(self, event: WebhookEvent) -> ApplyResult:
        """Apply one status event and hand off its side effects.

        The new state is saved together with its pending side effects
        before they are handed to order management; anything a failed
        hand-off left behind is delivered by the next apply on the AWB.
        """
        async with self.hold(event.awb):
            try:
                shipment = await self.repository.get_by_awb(event.awb)
            except KeyError:
                logger.info(
                    "Status event for unknown AWB %s acknowledged", event.awb
                )
                return ApplyResult(awb=event.awb, outcome=UNKNOWN_AWB)
            await self._flush_outbox(shipment)
            return await self._apply(shipment, event)

    async def record_proof_of_delivery(
        self,
        awb: str,
        *,
        pod_url: str = "",
        signature_url: str = "",
        received_at: datetime | None = None,
    ) -> Shipment | None:
        """Store proof-of-delivery links; ``None`` for an unknown AWB."""
        async with self.hold(awb):
            try:
                shipment = await self.repository.get_by_awb(awb)
            except KeyError:
                logger.info("POD for unknown AWB %s acknowledged", awb)
                return None
            if pod_url:
                shipment.pod_url = pod_url
            if signature_url:
                shipment.signature_url = signature_url
            shipment.pod_received_at = received_at or datetime.now(tz=UTC)
            logger.info("Stored proof of delivery for AWB %s", awb)
            return await self.repository.save(shipment)

    def _is_duplicate(self, shipment: Shipment, event: WebhookEvent) -> bool:
        if event.status_datetime is None:
            return (
                shipment.status_type.upper() == event.status_type.upper()
                and shipment.status.strip().lower()
                == event.status.strip().lower()
            )
        stamp = event.status_datetime.isoformat()
        return any(scan.get("datetime") == stamp for scan in shipment.scans)

    async def _apply(
        self, shipment: Shipment, event: WebhookEvent
    ) -> ApplyResult:
        current = shipment.state
        result = ApplyResult(
            awb=event.awb,
            outcome=APPLIED,
            state=current,
            previous_state=current,
        )

        if self._is_duplicate(shipment, event):
            result.outcome = DUPLICATE
            return result

        event_time = _aware(event.status_datetime)
        last_update = _aware(shipment.last_update)
        if event_time and last_update and event_time < last_update:
            logger.info(
                "Ignoring out-of-order event for %s (%s older than %s)",
                event.awb,
                event_time.isoformat(),
                last_update.isoformat(),
            )
            result.outcome = OUTDATED
            result.reason = "event is older than the stored status"
            return result

        classification = classify(event.status_type, event.status)
        new_state = classification.state
        shipment.scans.append(event.scan().as_dict())

        if new_state == CanonicalState.UNKNOWN:
            logger.warning(
                "Unrecognised status %r/%r for %s, keeping %s",
                event.status_type,
                event.status,
                event.awb,
                current,
            )
            await self.repository.save(shipment)
            result.outcome = STALE
            result.reason = "carrier status unrecognised; refresh tracking"
            return result

        has_time = event_time is not None
        if self._regresses(current, new_state, has_time=has_time):
            logger.info(
                "Ignoring event for %s: %s would regress %s",
                event.awb,
                new_state,
                current,
            )
            await self.repository.save(shipment)
            result.outcome = REGRESSION
            result.reason = f"{new_state} does not supersede {current}"
            return result

        newly_ndr = False
        shipment.state = new_state
        shipment.status_type = classification.status_type
        shipment.status = classification.status
        if event.status_code:
            shipment.status_code = event.status_code
        if event.location:
            shipment.last_location = event.location
        if event_time is not None:
            shipment.last_update = event_time
        if event.expected_delivery:
            shipment.expected_delivery = event.expected_delivery
        if new_state in NDR_CLEARING_STATES:
            shipment.is_ndr = False
            shipment.ndr_reason = ""
        elif event.is_ndr:
            newly_ndr = not shipment.is_ndr
            shipment.is_ndr = True
            shipment.ndr_reason = event.instructions or event.status_code

        order_status = (
            ORDER_STATUS_BY_STATE.get(new_state)
            if new_state != current
            else None
        )
        shipment.outbox.extend(
            self._side_effects(shipment, event, order_status, newly_ndr)
        )
        await self.repository.save(shipment)

        result.state = new_state
        result.ndr_detected = newly_ndr
        result.order_status = str(order_status) if order_status else None
        logger.info(
            "Shipment %s moved %s -> %s (%s)",
            event.awb,
            current,
            new_state,
            event.source,
        )
        await self._flush_outbox(shipment)
        return result

    @staticmethod
    def _regresses(
        current: CanonicalState, new: CanonicalState, *, has_time: bool
    ) -> bool:
        if current in TERMINAL_STATES:
            if new not in TERMINAL_STATES:
                return True
            return state_rank(new) < state_rank(current)
        if not has_time:
            return state_rank(new) < state_rank(current)
        return False

    def _side_effects(
        self,
        shipment: Shipment,
        event: WebhookEvent,
        order_status: OrderStatus | None,
        newly_ndr: bool,
    ) -> list[dict[str, Any]]:
        if self.order_management is None:
            return []
        effects: list[dict[str, Any]] = []
        if order_status is not None:
            effects.append(
                {
                    "kind": ORDER_STATUS_EFFECT,
                    "status": str(order_status),
                    "note": (
                        f"Delhivery AWB {shipment.awb}: {event.status} "
                        f"({shipment.state})"
                    ),
                }
            )
        if newly_ndr:
            effects.append(
                {
                    "kind": NOTIFY_EFFECT,
                    "event": NDR_DETECTED_EVENT,
                    "data": {
                        "awb": shipment.awb,
                        "status": event.status,
                        "status_code": event.status_code,
                        "reason": shipment.ndr_reason,
                        "location": event.location,
                    },
                }
            )
        return effects

    async def _flush_outbox(self, shipment: Shipment) -> None:
        if self.order_management is None:
            return
        while shipment.outbox:
            effect = shipment.outbox[0]
            if effect["kind"] == ORDER_STATUS_EFFECT:
                await self.order_management.set_order_status(
                    shipment.order_id, effect["status"], note=effect["note"]
                )
            else:
                await self.order_management.notify(
                    shipment.order_id, effect["event"], effect["data"]
                )
            shipment.outbox.pop(0)
            await self.repository.save(shipment)
