"""Delhivery shipment lifecycle engine for Litestar applications."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "CallbackRetryStore",
    "CanonicalState",
    "ConfigurationError",
    "DelhiveryConfig",
    "DelhiveryEngine",
    "DelhiveryError",
    "ManifestLedger",
    "OrderManagement",
    "PreconditionFailedError",
    "ShipmentLifecycle",
    "ShipmentNotFoundError",
    "ShipmentOperations",
    "ShipmentRepository",
    "ShipmentResponse",
    "WebhookIngestor",
    "__version__",
    "build_engine",
    "classify",
    "create_delhivery_router",
]

if TYPE_CHECKING:
    from litestar_delhivery.classifier import classify
    from litestar_delhivery.config import DelhiveryConfig
    from litestar_delhivery.enums import CanonicalState
    from litestar_delhivery.exceptions import (
        ConfigurationError,
        DelhiveryError,
        PreconditionFailedError,
        ShipmentNotFoundError,
    )
    from litestar_delhivery.lifecycle import ShipmentLifecycle
    from litestar_delhivery.operations import ShipmentOperations
    from litestar_delhivery.plugin import (
        DelhiveryEngine,
        build_engine,
        create_delhivery_router,
    )
    from litestar_delhivery.protocols import (
        CallbackRetryStore,
        ManifestLedger,
        OrderManagement,
        ShipmentRepository,
    )
    from litestar_delhivery.schemas import ShipmentResponse
    from litestar_delhivery.webhooks import WebhookIngestor


def __getattr__(name: str):
    # Lazy imports to avoid loading all submodules on package import.
    if name == "DelhiveryConfig":
        from litestar_delhivery.config import DelhiveryConfig

        return DelhiveryConfig
    if name in ("create_delhivery_router", "build_engine", "DelhiveryEngine"):
        from litestar_delhivery import plugin

        return getattr(plugin, name)
    if name == "classify":
        from litestar_delhivery.classifier import classify

        return classify
    if name == "CanonicalState":
        from litestar_delhivery.enums import CanonicalState

        return CanonicalState
    if name in (
        "ConfigurationError",
        "DelhiveryError",
        "PreconditionFailedError",
        "ShipmentNotFoundError",
    ):
        from litestar_delhivery import exceptions

        return getattr(exceptions, name)
    if name == "ShipmentLifecycle":
        from litestar_delhivery.lifecycle import ShipmentLifecycle

        return ShipmentLifecycle
    if name == "ShipmentOperations":
        from litestar_delhivery.operations import ShipmentOperations

        return ShipmentOperations
    if name == "WebhookIngestor":
        from litestar_delhivery.webhooks import WebhookIngestor

        return WebhookIngestor
    if name in (
        "CallbackRetryStore",
        "ManifestLedger",
        "OrderManagement",
        "ShipmentRepository",
    ):
        from litestar_delhivery import protocols

        return getattr(protocols, name)
    if name == "ShipmentResponse":
        from litestar_delhivery.schemas import ShipmentResponse

        return ShipmentResponse
    raise AttributeError(
        f"module 'litestar_delhivery' has no attribute {name!r}"
    )
