"""Tests for the SQLAlchemy webhook retry store."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.contrib.sqlalchemy.models import (
    Base,
    CallbackRetryModel,
)
from litestar_delhivery.contrib.sqlalchemy.repository import (
    SQLAlchemyShipmentRepository,
)
from litestar_delhivery.contrib.sqlalchemy.retry_store import (
    SQLAlchemyRetryStore,
)
from litestar_delhivery.lifecycle import ShipmentLifecycle
from litestar_delhivery.models import Shipment
from litestar_delhivery.retry import process_due_retries
from litestar_delhivery.webhooks import WebhookIngestor

_PAYLOAD = {
    "Shipment": {
        "AWB": "AWB001",
        "Status": {
            "Status": "In Transit",
            "StatusType": "UD",
            "StatusDateTime": "2026-10-19T09:00:00",
        },
    }
}


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest.fixture
def store(session_factory):
    return SQLAlchemyRetryStore(
        session_factory=session_factory,
        backoff_seconds=10,
    )


async def _add_retry(session_factory, *, due_in: timedelta) -> str:
    async with session_factory() as session:
        retry = CallbackRetryModel(
            awb="AWB001",
            payload=_PAYLOAD,
            headers={},
            attempts=1,
            next_retry_at=datetime.now(tz=UTC) + due_in,
            status="pending",
        )
        session.add(retry)
        await session.commit()
        return retry.id


async def test_store_failed_webhook(store, session_factory):
    """Stores a failed webhook and schedules its first retry."""
    retry_id = await store.store_failed_callback(
        awb="AWB001",
        payload=_PAYLOAD,
        headers={"content-type": "application/json"},
    )

    async with session_factory() as session:
        retry = await session.get(CallbackRetryModel, retry_id)
    assert retry.awb == "AWB001"
    assert retry.payload == _PAYLOAD
    assert retry.attempts == 0
    assert retry.status == "pending"
    assert retry.next_retry_at is not None


async def test_pending_event_is_stored_once(store, session_factory):
    key = "AWB001@2026-10-19T09:00:00+05:30"
    first = await store.store_failed_callback(
        awb="AWB001", payload=_PAYLOAD, headers={}, event_key=key
    )
    again = await store.store_failed_callback(
        awb="AWB001", payload=_PAYLOAD, headers={}, event_key=key
    )
    other = await store.store_failed_callback(
        awb="AWB001", payload=_PAYLOAD, headers={}, event_key="AWB001@x"
    )

    assert again == first
    assert other != first

    await store.mark_succeeded(first)
    requeued = await store.store_failed_callback(
        awb="AWB001", payload=_PAYLOAD, headers={}, event_key=key
    )

    assert requeued != first
    async with session_factory() as session:
        retry = await session.get(CallbackRetryModel, requeued)
    assert retry.event_key == key


async def test_get_due_retries_empty(store):
    assert await store.get_due_retries() == []


async def test_get_due_retries_finds_due(store, session_factory):
    retry_id = await _add_retry(
        session_factory, due_in=-timedelta(minutes=1)
    )

    [retry] = await store.get_due_retries()

    assert retry == {
        "id": retry_id,
        "awb": "AWB001",
        "event_key": "",
        "payload": _PAYLOAD,
        "headers": {},
        "attempts": 1,
        "last_error": None,
    }


async def test_get_due_retries_skips_future(store, session_factory):
    await _add_retry(session_factory, due_in=timedelta(hours=1))
    assert await store.get_due_retries() == []


async def test_mark_failed_then_exhausted(store, session_factory):
    retry_id = await store.store_failed_callback(
        awb="AWB001", payload={}, headers={}
    )

    await store.mark_failed(retry_id, error="Order service down")

    async with session_factory() as session:
        retry = await session.get(CallbackRetryModel, retry_id)
        assert retry.status == "pending"
        assert retry.attempts == 1
        assert retry.last_error == "Order service down"

    await store.mark_exhausted(retry_id)

    async with session_factory() as session:
        retry = await session.get(CallbackRetryModel, retry_id)
        assert retry.status == "exhausted"


async def test_due_retry_is_replayed_into_database(session_factory):
    repo = SQLAlchemyShipmentRepository(session_factory=session_factory)
    await repo.save(
        Shipment(
            order_id="42",
            awb="AWB001",
            status_type="UD",
            status="Manifested",
        )
    )
    store = SQLAlchemyRetryStore(session_factory, backoff_seconds=0)
    await store.store_failed_callback(
        awb="AWB001", payload=_PAYLOAD, headers={}
    )
    config = DelhiveryConfig()
    ingestor = WebhookIngestor(config, ShipmentLifecycle(repo), store)

    processed = await process_due_retries(
        retry_store=store, ingestor=ingestor, config=config
    )

    assert processed == 1
    assert await store.get_due_retries() == []
    shipment = await repo.get_by_awb("AWB001")
    assert shipment.state == "in_transit"
