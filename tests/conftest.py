"""Shared fixtures for litestar-delhivery tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest
from litestar import Litestar
from litestar.testing import TestClient

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.memory import (
    InMemoryCacheStore,
    InMemoryManifestLedger,
    InMemoryOrderManagement,
    InMemoryRetryStore,
    InMemoryShipmentRepository,
)
from litestar_delhivery.models import OrderDetails, OrderItem
from litestar_delhivery.plugin import (
    DelhiveryEngine,
    build_engine,
    create_delhivery_router,
)

BASE_URL = "https://delhivery.test"
PDF_BYTES = b"%PDF-1.4\n% test label\n"

Responder = Callable[[httpx.Request], httpx.Response]


class FakeDelhivery:
    """In-process stand-in for the Delhivery API.

    Records every request; default answers can be replaced per
    ``(method, path)`` through :meth:`respond`.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.manifests: list[dict] = []
        self.tracking: dict[str, dict] = {}
        self.unserviceable: set[str] = set()
        self._overrides: dict[tuple[str, str], Responder] = {}
        self._awb_counter = 0

    def respond(
        self, method: str, path: str, responder: Responder | httpx.Response
    ) -> None:
        if isinstance(responder, httpx.Response):
            fixed = responder

            def responder(request: httpx.Request) -> httpx.Response:
                return fixed

        self._overrides[(method.upper(), path)] = responder

    def calls(self, path: str, method: str | None = None) -> list:
        return [
            r
            for r in self.requests
            if r.url.path == path
            and (method is None or r.method == method.upper())
        ]

    def set_tracking(
        self,
        awb: str,
        status_type: str,
        status: str,
        status_datetime: str = "2026-10-19T10:00:00",
        *,
        instructions: str = "",
        nsl_code: str = "",
        location: str = "Bengaluru_Hub (Karnataka)",
    ) -> None:
        self.tracking[awb] = {
            "AWB": awb,
            "ReferenceNo": "",
            "NSLCode": nsl_code,
            "ExpectedDeliveryDate": "2026-10-22T23:59:00",
            "Status": {
                "Status": status,
                "StatusType": status_type,
                "StatusDateTime": status_datetime,
                "StatusLocation": location,
                "Instructions": instructions,
            },
            "Scans": [
                {
                    "ScanDetail": {
                        "Scan": status,
                        "ScanDateTime": status_datetime,
                        "ScannedLocation": location,
                        "ScanType": status_type,
                        "Instructions": instructions,
                    }
                }
            ],
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        override = self._overrides.get((request.method, request.url.path))
        if override is not None:
            return override(request)
        return self._default(request)

    def _default(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/cmu/create.json":
            form = parse_qs(request.content.decode())
            data = json.loads(form["data"][0])
            self.manifests.append(data)
            packages = []
            for shipment in data["shipments"]:
                self._awb_counter += 1
                packages.append(
                    {
                        "waybill": f"AWB{self._awb_counter:03d}",
                        "refnum": shipment["order"],
                        "status": "Success",
                        "remarks": [],
                    }
                )
            return httpx.Response(
                200, json={"success": True, "packages": packages}
            )
        if path == "/c/api/pin-codes/json/":
            pin = request.url.params.get("filter_codes", "")
            if pin in self.unserviceable:
                return httpx.Response(200, json={"delivery_codes": []})
            return httpx.Response(
                200,
                json={
                    "delivery_codes": [
                        {"postal_code": {"pin": int(pin), "repl": ""}}
                    ]
                },
            )
        if path == "/api/p/edit":
            return httpx.Response(
                200, json={"status": True, "remark": "Request accepted"}
            )
        if path == "/api/p/update":
            return httpx.Response(200, json={"request_id": "ndr-req-1"})
        if path == "/api/v1/packages/json/":
            awbs = request.url.params.get("waybill", "").split(",")
            return httpx.Response(
                200,
                json={
                    "ShipmentData": [
                        {"Shipment": self.tracking[awb]}
                        for awb in awbs
                        if awb in self.tracking
                    ]
                },
            )
        if path == "/waybill/api/bulk/json/":
            count = int(request.url.params.get("count", "1"))
            waybills = [f"WB{n:05d}" for n in range(1, count + 1)]
            return httpx.Response(200, json=",".join(waybills))
        if path == "/fm/request/new/":
            return httpx.Response(
                200, json={"pickup_id": 9001, "incoming_center_name": "BLR"}
            )
        if path.startswith("/api/rest/ewaybill/"):
            return httpx.Response(200, json={"status": "Success"})
        if path == "/api/rest/fetch/pkg/document/":
            return httpx.Response(
                200, json={"url": "https://docs.delhivery.test/epod.pdf"}
            )
        if path == "/api/p/packing_slip":
            return httpx.Response(
                200,
                content=PDF_BYTES,
                headers={"content-type": "application/pdf"},
            )
        return httpx.Response(404, json={"error": f"no route {path}"})


def make_order(
    order_id: str = "42",
    *,
    order_number: str = "ORD-42",
    payment_method: str = "prepaid",
    total: str = "1499.00",
    quantity: int = 2,
    pin: str = "560038",
) -> OrderDetails:
    return OrderDetails(
        order_id=order_id,
        order_number=order_number,
        name="Asha Verma",
        address="12 MG Road, Indiranagar",
        city="Bengaluru",
        state="Karnataka",
        pin=pin,
        phone="+91 98450 12345",
        total=Decimal(total),
        payment_method=payment_method,
        items=[OrderItem(name="Cotton kurta", quantity=quantity)],
    )


@pytest.fixture()
def carrier() -> FakeDelhivery:
    return FakeDelhivery()


@pytest.fixture()
def http_client(carrier: FakeDelhivery) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(carrier))


@pytest.fixture()
def config() -> DelhiveryConfig:
    return DelhiveryConfig(
        api_key="test-token",
        pickup_location="Main Warehouse",
        base_url=BASE_URL,
        webhook_secret="hook-secret",
        backoff_base_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture()
def repository() -> InMemoryShipmentRepository:
    return InMemoryShipmentRepository()


@pytest.fixture()
def orders() -> InMemoryOrderManagement:
    return InMemoryOrderManagement(
        [
            make_order(),
            make_order(
                "43",
                order_number="ORD-43",
                payment_method="cod",
                total="60000.00",
            ),
        ]
    )


@pytest.fixture()
def ledger() -> InMemoryManifestLedger:
    return InMemoryManifestLedger()


@pytest.fixture()
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture()
def retry_store() -> InMemoryRetryStore:
    return InMemoryRetryStore()


@pytest.fixture()
def engine(
    config: DelhiveryConfig,
    repository: InMemoryShipmentRepository,
    orders: InMemoryOrderManagement,
    ledger: InMemoryManifestLedger,
    cache: InMemoryCacheStore,
    retry_store: InMemoryRetryStore,
    http_client: httpx.AsyncClient,
) -> DelhiveryEngine:
    return build_engine(
        config=config,
        repository=repository,
        order_management=orders,
        ledger=ledger,
        cache=cache,
        retry_store=retry_store,
        http_client=http_client,
    )


@pytest.fixture()
def operations(engine: DelhiveryEngine):
    return engine.operations


@pytest.fixture()
def lifecycle(engine: DelhiveryEngine):
    return engine.lifecycle


@pytest.fixture()
def ingestor(engine: DelhiveryEngine):
    return engine.ingestor


@pytest.fixture()
def test_app(config: DelhiveryConfig, engine: DelhiveryEngine) -> Litestar:
    router = create_delhivery_router(config=config, engine=engine)
    return Litestar(route_handlers=[router])


@pytest.fixture()
def client(test_app: Litestar) -> Iterator[TestClient]:
    with TestClient(app=test_app) as tc:
        yield tc


# ---------------------------------------------------------------------------
# SQLAlchemy fixtures (conditional)
# ---------------------------------------------------------------------------

_HAS_SQLALCHEMY = False
try:
    from sqlalchemy.ext.asyncio import (
        AsyncSession,
        async_sessionmaker,
        create_async_engine,
    )

    _HAS_SQLALCHEMY = True
except ImportError:
    pass

if _HAS_SQLALCHEMY:

    @pytest.fixture()
    async def async_engine():
        from litestar_delhivery.contrib.sqlalchemy.models import Base

        engine = create_async_engine("sqlite+aiosqlite://", echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
        await engine.dispose()

    @pytest.fixture()
    async def async_session_factory(async_engine):
        return async_sessionmaker(
            async_engine, class_=AsyncSession, expire_on_commit=False
        )

    @pytest.fixture()
    async def async_session(async_session_factory):
        async with async_session_factory() as session:
            yield session
