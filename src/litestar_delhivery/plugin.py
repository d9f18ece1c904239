"""Router/plugin factory for litestar-delhivery."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from litestar import Router
from litestar.di import Provide

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.exceptions import EXCEPTION_HANDLERS
from litestar_delhivery.governor import RateGovernor
from litestar_delhivery.lifecycle import ShipmentLifecycle
from litestar_delhivery.locks import KeyedLocks
from litestar_delhivery.memory import (
    InMemoryCacheStore,
    InMemoryManifestLedger,
)
from litestar_delhivery.operations import ShipmentOperations
from litestar_delhivery.protocols import (
    CacheStore,
    CallbackRetryStore,
    ManifestLedger,
    OrderManagement,
    ShipmentRepository,
)
from litestar_delhivery.references import OrderReferenceGenerator
from litestar_delhivery.routes.carrier import (
    PickupController,
    ServiceabilityController,
)
from litestar_delhivery.routes.shipments import ShipmentController
from litestar_delhivery.routes.webhooks import WebhookController
from litestar_delhivery.transport import DelhiveryTransport
from litestar_delhivery.webhooks import WebhookIngestor


@dataclass
class DelhiveryEngine:
    """The wired components behind the router."""

    config: DelhiveryConfig
    transport: DelhiveryTransport
    governor: RateGovernor
    lifecycle: ShipmentLifecycle
    operations: ShipmentOperations
    ingestor: WebhookIngestor


def build_engine(
    *,
    config: DelhiveryConfig,
    repository: ShipmentRepository,
    order_management: OrderManagement | None = None,
    ledger: ManifestLedger | None = None,
    cache: CacheStore | None = None,
    retry_store: CallbackRetryStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> DelhiveryEngine:
    """Wire the engine components around shared locks and governor.

    Args:
        config: Integration configuration.
        repository: Shipment persistence backend.
        order_management: Order lookup and status sink.
        ledger: Manifest history store. In-memory if not provided.
        cache: Cache backend. In-memory if not provided.
        retry_store: Storage for the webhook retry queue.
        http_client: Client for carrier calls. Created lazily by the
            transport if not provided.
    """
    governor = RateGovernor(cache or InMemoryCacheStore())
    transport = DelhiveryTransport(
        config, governor=governor, client=http_client
    )
    locks = KeyedLocks()
    lifecycle = ShipmentLifecycle(repository, order_management, locks=locks)
    references = OrderReferenceGenerator(
        ledger or InMemoryManifestLedger(), locks=locks
    )
    operations = ShipmentOperations(
        config=config,
        transport=transport,
        lifecycle=lifecycle,
        references=references,
        governor=governor,
    )
    ingestor = WebhookIngestor(config, lifecycle, retry_store)
    return DelhiveryEngine(
        config=config,
        transport=transport,
        governor=governor,
        lifecycle=lifecycle,
        operations=operations,
        ingestor=ingestor,
    )


def create_delhivery_router(
    *,
    config: DelhiveryConfig,
    repository: ShipmentRepository | None = None,
    order_management: OrderManagement | None = None,
    ledger: ManifestLedger | None = None,
    cache: CacheStore | None = None,
    retry_store: CallbackRetryStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    engine: DelhiveryEngine | None = None,
) -> Router:
    """Create a configured Litestar router.

    Either pass ``engine`` (from :func:`build_engine`) or the pieces to
    build one; ``repository`` is required in the latter case.

    Returns:
        A Litestar Router with all Delhivery endpoints.
    """
    if engine is None:
        if repository is None:
            raise ValueError("repository is required without an engine")
        engine = build_engine(
            config=config,
            repository=repository,
            order_management=order_management,
            ledger=ledger,
            cache=cache,
            retry_store=retry_store,
            http_client=http_client,
        )

    return Router(
        path="/",
        route_handlers=[
            ShipmentController,
            ServiceabilityController,
            PickupController,
            WebhookController,
        ],
        dependencies={
            "config": Provide(lambda: engine.config, sync_to_thread=False),
            "operations": Provide(
                lambda: engine.operations,
                sync_to_thread=False,
            ),
            "ingestor": Provide(
                lambda: engine.ingestor,
                sync_to_thread=False,
            ),
        },
        exception_handlers=EXCEPTION_HANDLERS,
    )
