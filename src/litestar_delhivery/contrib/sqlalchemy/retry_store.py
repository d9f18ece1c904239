"""Webhook retry queue stored in ``delhivery_callback_retries``.

Rows are keyed by the status event they carry: a carrier redelivery of
an event that is still queued reuses the pending row instead of adding
a second one.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from litestar_delhivery.contrib.sqlalchemy.models import CallbackRetryModel
from litestar_delhivery.retry import (
    EXHAUSTED,
    PENDING,
    SUCCEEDED,
    compute_next_retry_at,
)


def _as_entry(row: CallbackRetryModel) -> dict[str, Any]:
    return {
        "id": row.id,
        "awb": row.awb,
        "event_key": row.event_key,
        "payload": row.payload,
        "headers": row.headers,
        "attempts": row.attempts,
        "last_error": row.last_error,
    }


class SQLAlchemyRetryStore:
    """Implements the CallbackRetryStore protocol over SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        backoff_seconds: int = 60,
    ) -> None:
        self._session_factory = session_factory
        self._backoff_seconds = backoff_seconds

    async def store_failed_callback(
        self,
        awb: str,
        payload: dict,
        headers: dict,
        event_key: str = "",
    ) -> str:
        async with self._session_factory() as session:
            if event_key:
                queued = await session.scalar(
                    select(CallbackRetryModel)
                    .where(CallbackRetryModel.event_key == event_key)
                    .where(CallbackRetryModel.status == PENDING)
                    .limit(1)
                )
                if queued is not None:
                    return queued.id

            retry_id = str(uuid.uuid4())
            session.add(
                CallbackRetryModel(
                    id=retry_id,
                    awb=awb,
                    event_key=event_key,
                    payload=payload,
                    headers=headers,
                    attempts=0,
                    next_retry_at=compute_next_retry_at(
                        attempt=1, backoff_seconds=self._backoff_seconds
                    ),
                    status=PENDING,
                )
            )
            await session.commit()
            return retry_id

    async def get_due_retries(self, limit: int = 10) -> list[dict]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(CallbackRetryModel)
                .where(CallbackRetryModel.status == PENDING)
                .where(
                    CallbackRetryModel.next_retry_at <= datetime.now(tz=UTC)
                )
                .order_by(CallbackRetryModel.next_retry_at.asc())
                .limit(limit)
            )
            return [_as_entry(row) for row in rows]

    async def mark_succeeded(self, retry_id: str) -> None:
        def succeed(row: CallbackRetryModel) -> None:
            row.status = SUCCEEDED

        await self._update(retry_id, succeed)

    async def mark_failed(self, retry_id: str, error: str) -> None:
        def reschedule(row: CallbackRetryModel) -> None:
            row.attempts += 1
            row.last_error = error
            row.next_retry_at = compute_next_retry_at(
                attempt=row.attempts + 1,
                backoff_seconds=self._backoff_seconds,
            )
            row.status = PENDING

        await self._update(retry_id, reschedule)

    async def mark_exhausted(self, retry_id: str) -> None:
        def give_up(row: CallbackRetryModel) -> None:
            row.status = EXHAUSTED

        await self._update(retry_id, give_up)

    async def _update(
        self, retry_id: str, change: Callable[[CallbackRetryModel], None]
    ) -> None:
        async with self._session_factory() as session:
            row = await session.get(CallbackRetryModel, retry_id)
            if row is not None:
                change(row)
                await session.commit()
