"""Litestar example app wiring litestar-delhivery with in-memory stores.

Point it at the Delhivery staging API with::

    DELHIVERY_API_KEY=... DELHIVERY_PICKUP_LOCATION=... \
    DELHIVERY_STAGING=true litestar --app examples.app:app run
"""

from __future__ import annotations

import logging
from decimal import Decimal

from litestar import Litestar

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.memory import (
    InMemoryCacheStore,
    InMemoryManifestLedger,
    InMemoryOrderManagement,
    InMemoryRetryStore,
    InMemoryShipmentRepository,
)
from litestar_delhivery.models import OrderDetails, OrderItem
from litestar_delhivery.plugin import build_engine, create_delhivery_router

logging.basicConfig(level=logging.INFO)

DEMO_ORDER = OrderDetails(
    order_id="42",
    order_number="ORD-42",
    name="Asha Verma",
    address="12 MG Road, Indiranagar",
    city="Bengaluru",
    state="Karnataka",
    pin="560038",
    phone="+91 98450 12345",
    total=Decimal("1499.00"),
    payment_method="cod",
    items=[OrderItem(name="Cotton kurta", quantity=2)],
)

config = DelhiveryConfig()
orders = InMemoryOrderManagement([DEMO_ORDER])
retry_store = InMemoryRetryStore(config.retry_backoff_seconds)

engine = build_engine(
    config=config,
    repository=InMemoryShipmentRepository(),
    order_management=orders,
    ledger=InMemoryManifestLedger(),
    cache=InMemoryCacheStore(),
    retry_store=retry_store,
)


async def close_transport() -> None:
    await engine.transport.aclose()


app = Litestar(
    route_handlers=[create_delhivery_router(config=config, engine=engine)],
    on_shutdown=[close_transport],
)
