"""Tests for SQLAlchemy ShipmentRepository and ManifestLedger."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from litestar_delhivery.contrib.sqlalchemy.models import Base
from litestar_delhivery.contrib.sqlalchemy.repository import (
    SQLAlchemyManifestLedger,
    SQLAlchemyShipmentRepository,
)
from litestar_delhivery.enums import CanonicalState, PaymentMode
from litestar_delhivery.lifecycle import APPLIED, ShipmentLifecycle
from litestar_delhivery.models import (
    ManifestHistory,
    PackageProfile,
    Shipment,
    WebhookEvent,
)
from litestar_delhivery.references import OrderReferenceGenerator

IST = timezone(timedelta(hours=5, minutes=30))


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
def repo(session_factory):
    return SQLAlchemyShipmentRepository(session_factory=session_factory)


@pytest.fixture
def sql_ledger(session_factory):
    return SQLAlchemyManifestLedger(session_factory=session_factory)


def _shipment(**fields) -> Shipment:
    values = {
        "order_id": "42",
        "awb": "AWB001",
        "order_reference": "ORD-42",
        "status_type": "UD",
        "status": "Manifested",
    }
    values.update(fields)
    return Shipment(**values)


async def test_save_and_get_by_awb(repo):
    """Repository round-trips every shipment field."""
    saved = await repo.save(
        _shipment(
            package=PackageProfile(
                weight=Decimal("140"),
                length=Decimal("24"),
                width=Decimal("18"),
                height=Decimal("3"),
                item_count=2,
            ),
            payment_mode=PaymentMode.COD,
            cod_amount=Decimal("1499.00"),
            declared_value=Decimal("1499.00"),
            scans=[{"status": "Manifested", "datetime": ""}],
        )
    )

    fetched = await repo.get_by_awb("AWB001")

    assert fetched.id == saved.id
    assert fetched.state == CanonicalState.MANIFESTED
    assert fetched.payment_mode == PaymentMode.COD
    assert fetched.cod_amount == Decimal("1499.00")
    assert fetched.package.item_count == 2
    assert fetched.package.weight == Decimal("140")
    assert fetched.scans == [{"status": "Manifested", "datetime": ""}]


async def test_get_by_awb_not_found(repo):
    """Missing AWBs raise KeyError."""
    with pytest.raises(KeyError):
        await repo.get_by_awb("NOPE")
    with pytest.raises(KeyError):
        await repo.get_by_awb("")


async def test_save_updates_existing_row(repo):
    """Saving the same record twice updates it in place."""
    shipment = await repo.save(_shipment())
    shipment.state = CanonicalState.CANCELLED
    shipment.status_type = "CN"
    shipment.status = "Cancelled"

    await repo.save(shipment)

    rows = await repo.list_by_order("42")
    assert len(rows) == 1
    assert rows[0].state == CanonicalState.CANCELLED


async def test_list_by_order_oldest_first(repo):
    await repo.save(_shipment(awb="AWB001"))
    await repo.save(_shipment(awb="AWB002"))
    await repo.save(_shipment(order_id="43", awb="AWB003"))

    rows = await repo.list_by_order("42")

    assert [row.awb for row in rows] == ["AWB001", "AWB002"]


async def test_last_update_comes_back_in_utc(repo):
    """Timezone-aware timestamps survive the trip as UTC."""
    stamp = datetime(2026, 10, 19, 15, 30, tzinfo=IST)
    await repo.save(_shipment(last_update=stamp))

    fetched = await repo.get_by_awb("AWB001")

    assert fetched.last_update == stamp
    assert fetched.last_update.tzinfo == UTC


async def test_proof_of_delivery_and_outbox_round_trip(repo):
    effect = {
        "kind": "order_status",
        "status": "completed",
        "note": "Delhivery AWB AWB001: Delivered (delivered)",
    }
    received = datetime(2026, 10, 19, 18, 0, tzinfo=IST)
    await repo.save(
        _shipment(
            pod_url="https://pod.example/AWB001.jpg",
            signature_url="https://pod.example/AWB001-sign.png",
            pod_received_at=received,
            outbox=[effect],
        )
    )

    fetched = await repo.get_by_awb("AWB001")

    assert fetched.pod_url == "https://pod.example/AWB001.jpg"
    assert fetched.signature_url == "https://pod.example/AWB001-sign.png"
    assert fetched.pod_received_at == received
    assert fetched.outbox == [effect]

    fetched.outbox.clear()
    await repo.save(fetched)
    assert (await repo.get_by_awb("AWB001")).outbox == []


async def test_lifecycle_over_sqlalchemy(repo):
    """Status events apply and dedupe against the database."""
    await repo.save(_shipment())
    lifecycle = ShipmentLifecycle(repo)
    event = WebhookEvent(
        awb="AWB001",
        status_type="UD",
        status="In Transit",
        status_datetime=datetime(2026, 10, 19, 9, 0, tzinfo=IST),
    )

    first = await lifecycle.apply_event(event)
    second = await lifecycle.apply_event(event)

    assert first.outcome == APPLIED
    assert second.outcome == "duplicate"
    fetched = await repo.get_by_awb("AWB001")
    assert fetched.state == CanonicalState.IN_TRANSIT
    assert len(fetched.scans) == 1


async def test_ledger_defaults_and_persists(sql_ledger):
    empty = await sql_ledger.get("42")
    assert empty == ManifestHistory(order_id="42")

    await sql_ledger.save(
        ManifestHistory(
            order_id="42",
            attempts=1,
            references=["ORD-42"],
            retired_awbs=["AWB001"],
        )
    )

    history = await sql_ledger.get("42")
    assert history.attempts == 1
    assert history.references == ["ORD-42"]
    assert history.retired_awbs == ["AWB001"]


async def test_references_over_sqlalchemy_ledger(sql_ledger):
    references = OrderReferenceGenerator(
        sql_ledger, clock=lambda: datetime(2026, 10, 19, 9, 30, tzinfo=UTC)
    )

    assert await references.next_order_reference("42", base="ORD-42") == (
        "ORD-42"
    )
    await references.retire_awb("42", "AWB001")
    assert await references.next_order_reference("42", base="ORD-42") == (
        "ORD-42-1-20261019093000"
    )
