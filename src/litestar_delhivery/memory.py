"""In-process implementations of the collaborator protocols.

Suitable for tests and single-process deployments; records are copied
on the way in and out so callers can only change state through ``save``.
"""

from __future__ import annotations

import copy
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from litestar_delhivery.models import ManifestHistory, OrderDetails, Shipment
from litestar_delhivery.retry import (
    EXHAUSTED,
    PENDING,
    SUCCEEDED,
    compute_next_retry_at,
)


class InMemoryShipmentRepository:
    """Shipment repository backed by a dict keyed by record id."""

    def __init__(self) -> None:
        self.items: dict[str, Shipment] = {}

    async def get_by_awb(self, awb: str) -> Shipment:
        for shipment in self.items.values():
            if shipment.awb and shipment.awb == awb:
                return copy.deepcopy(shipment)
        raise KeyError(awb)

    async def list_by_order(self, order_id: str) -> list[Shipment]:
        return [
            copy.deepcopy(s)
            for s in self.items.values()
            if s.order_id == order_id
        ]

    async def save(self, shipment: Shipment) -> Shipment:
        self.items[shipment.id] = copy.deepcopy(shipment)
        return copy.deepcopy(shipment)


class InMemoryManifestLedger:
    def __init__(self) -> None:
        self._histories: dict[str, ManifestHistory] = {}

    async def get(self, order_id: str) -> ManifestHistory:
        history = self._histories.get(order_id)
        if history is None:
            return ManifestHistory(order_id=order_id)
        return copy.deepcopy(history)

    async def save(self, history: ManifestHistory) -> None:
        self._histories[history.order_id] = copy.deepcopy(history)


class InMemoryCacheStore:
    """TTL cache; expiry is evaluated lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return copy.deepcopy(value)

    async def set(
        self, key: str, value: Any, ttl: float | None = None
    ) -> None:
        expires_at = None if ttl is None else self._clock() + ttl
        self._data[key] = (copy.deepcopy(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class InMemoryOrderManagement:
    """Order store and event sink that records every call."""

    def __init__(self, orders: list[OrderDetails] | None = None) -> None:
        self.orders: dict[str, OrderDetails] = {
            order.order_id: order for order in orders or []
        }
        self.statuses: dict[str, str] = {}
        self.status_history: list[tuple[str, str, str]] = []
        self.notifications: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, order: OrderDetails) -> None:
        self.orders[order.order_id] = order

    async def get_order(self, order_id: str) -> OrderDetails:
        return copy.deepcopy(self.orders[order_id])

    async def set_order_status(
        self, order_id: str, status: str, note: str = ""
    ) -> None:
        self.statuses[order_id] = status
        self.status_history.append((order_id, status, note))

    async def notify(
        self, order_id: str, event: str, data: dict[str, Any]
    ) -> None:
        self.notifications.append((order_id, event, dict(data)))


class InMemoryRetryStore:
    """Webhook retry queue kept in a dict, one pending entry per event."""

    def __init__(self, backoff_seconds: int = 60) -> None:
        self._backoff_seconds = backoff_seconds
        self.entries: dict[str, dict[str, Any]] = {}

    async def store_failed_callback(
        self,
        awb: str,
        payload: dict,
        headers: dict,
        event_key: str = "",
    ) -> str:
        for entry in self.entries.values():
            if (
                event_key
                and entry["event_key"] == event_key
                and entry["status"] == PENDING
            ):
                return entry["id"]
        retry_id = str(uuid.uuid4())
        self.entries[retry_id] = {
            "id": retry_id,
            "awb": awb,
            "event_key": event_key,
            "payload": copy.deepcopy(payload),
            "headers": dict(headers),
            "attempts": 0,
            "next_retry_at": compute_next_retry_at(
                attempt=1, backoff_seconds=self._backoff_seconds
            ),
            "last_error": None,
            "status": PENDING,
        }
        return retry_id

    async def get_due_retries(self, limit: int = 10) -> list[dict]:
        now = datetime.now(tz=UTC)
        due = sorted(
            (
                entry
                for entry in self.entries.values()
                if entry["status"] == PENDING
                and entry["next_retry_at"] <= now
            ),
            key=lambda entry: entry["next_retry_at"],
        )
        return [
            {
                "id": entry["id"],
                "awb": entry["awb"],
                "event_key": entry["event_key"],
                "payload": copy.deepcopy(entry["payload"]),
                "headers": dict(entry["headers"]),
                "attempts": entry["attempts"],
                "last_error": entry["last_error"],
            }
            for entry in due[:limit]
        ]

    async def mark_succeeded(self, retry_id: str) -> None:
        if retry_id in self.entries:
            self.entries[retry_id]["status"] = SUCCEEDED

    async def mark_failed(self, retry_id: str, error: str) -> None:
        entry = self.entries.get(retry_id)
        if entry is not None:
            entry["attempts"] += 1
            entry["last_error"] = error
            entry["next_retry_at"] = compute_next_retry_at(
                attempt=entry["attempts"] + 1,
                backoff_seconds=self._backoff_seconds,
            )
            entry["status"] = PENDING

    async def mark_exhausted(self, retry_id: str) -> None:
        if retry_id in self.entries:
            self.entries[retry_id]["status"] = EXHAUSTED
