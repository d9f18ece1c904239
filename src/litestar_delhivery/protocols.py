"""Collaborator protocols for the shipment lifecycle engine."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from litestar_delhivery.models import ManifestHistory, OrderDetails, Shipment

__all__ = [
    "CacheStore",
    "CallbackRetryStore",
    "ManifestLedger",
    "OrderManagement",
    "ShipmentRepository",
]


@runtime_checkable
class ShipmentRepository(Protocol):
    """Persistence for local shipment records."""

    async def get_by_awb(self, awb: str) -> Shipment:
        """Get a shipment by AWB. Raises KeyError if not found."""
        ...

    async def list_by_order(self, order_id: str) -> list[Shipment]:
        """List every shipment (any state) recorded for an order."""
        ...

    async def save(self, shipment: Shipment) -> Shipment:
        """Insert or update a shipment record."""
        ...


@runtime_checkable
class ManifestLedger(Protocol):
    """Per-order manifest history backing re-manifest references."""

    async def get(self, order_id: str) -> ManifestHistory:
        """Return the history, empty if the order was never manifested."""
        ...

    async def save(self, history: ManifestHistory) -> None:
        ...


@runtime_checkable
class OrderManagement(Protocol):
    """External order-management system."""

    async def get_order(self, order_id: str) -> OrderDetails:
        """Resolve order details. Raises KeyError if not found."""
        ...

    async def set_order_status(
        self, order_id: str, status: str, note: str = ""
    ) -> None:
        ...

    async def notify(
        self, order_id: str, event: str, data: dict[str, Any]
    ) -> None:
        """Hand off a notification trigger; content is not our concern."""
        ...


@runtime_checkable
class CacheStore(Protocol):
    """Key-value store with per-key TTL."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(
        self, key: str, value: Any, ttl: float | None = None
    ) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


@runtime_checkable
class CallbackRetryStore(Protocol):
    """Storage abstraction for the webhook retry queue.

    Full lifecycle: store -> get_due ->
    mark_succeeded / mark_failed / mark_exhausted.
    """

    async def store_failed_callback(
        self,
        awb: str,
        payload: dict,
        headers: dict,
        event_key: str = "",
    ) -> str:
        """Queue a failed delivery; returns the retry ID.

        An entry still pending for the same ``event_key`` is reused.
        """
        ...

    async def get_due_retries(self, limit: int = 10) -> list[dict]:
        """Get retries that are due for processing."""
        ...

    async def mark_succeeded(self, retry_id: str) -> None:
        """Mark a retry as successfully processed."""
        ...

    async def mark_failed(self, retry_id: str, error: str) -> None:
        """Mark a retry as failed and schedule next attempt."""
        ...

    async def mark_exhausted(self, retry_id: str) -> None:
        """Mark a retry as exhausted (dead letter)."""
        ...
