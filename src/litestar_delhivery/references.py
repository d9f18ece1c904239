"""Order references for manifest attempts.

The carrier deduplicates manifests by order reference and a cancelled
AWB can never be revived, so once an AWB of an order has been cancelled
every new attempt needs a reference the carrier has not seen before.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from litestar_delhivery.locks import KeyedLocks
from litestar_delhivery.payloads import sanitize_reference
from litestar_delhivery.protocols import ManifestLedger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class OrderReferenceGenerator:
    """Issues carrier-safe, never-reused order references per order."""

    def __init__(
        self,
        ledger: ManifestLedger,
        locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ledger = ledger
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def next_order_reference(
        self,
        order_id: str,
        prior_cancelled_awb: str | None = None,
        *,
        base: str | None = None,
    ) -> str:
        """Return the reference for the next manifest attempt of an order.

        Args:
            order_id: Order identifier (ledger key).
            prior_cancelled_awb: AWB cancelled since the last attempt, if
                the caller knows of one not yet retired.
            base: Human-facing order number; defaults to ``order_id``.
        """
        async with self._locks.hold(f"order:{order_id}"):
            history = await self._ledger.get(order_id)
            if prior_cancelled_awb and (
                prior_cancelled_awb not in history.retired_awbs
            ):
                history.retired_awbs.append(prior_cancelled_awb)

            reference = sanitize_reference(base or order_id) or "ORDER"
            if history.retired_awbs:
                stamp = self._clock().strftime("%Y%m%d%H%M%S")
                attempt = history.attempts + 1
                candidate = f"{reference}-{attempt}-{stamp}"
                while candidate in history.references:
                    attempt += 1
                    candidate = f"{reference}-{attempt}-{stamp}"
                history.attempts = attempt
                logger.info(
                    "Re-manifesting order %s with reference %s "
                    "(retired AWBs: %s, attempt #%d)",
                    order_id,
                    candidate,
                    ", ".join(history.retired_awbs),
                    attempt,
                )
                reference = candidate

            if reference not in history.references:
                history.references.append(reference)
            await self._ledger.save(history)
            return reference

    async def retire_awb(self, order_id: str, awb: str) -> None:
        """Record that ``awb`` was cancelled and must never be reused."""
        async with self._locks.hold(f"order:{order_id}"):
            history = await self._ledger.get(order_id)
            if awb not in history.retired_awbs:
                history.retired_awbs.append(awb)
                await self._ledger.save(history)
