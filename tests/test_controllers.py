# tests/test_controllers.py
"""Tests verifying Controller-based route structure."""

import pytest
from litestar import Controller

from litestar_delhivery.routes.carrier import (
    PickupController,
    ServiceabilityController,
)
from litestar_delhivery.routes.shipments import ShipmentController
from litestar_delhivery.routes.webhooks import WebhookController


@pytest.mark.parametrize(
    ("controller", "path", "tags"),
    [
        (ShipmentController, "/shipments", ["shipments"]),
        (WebhookController, "/webhooks", ["webhooks"]),
        (ServiceabilityController, "/serviceability", ["serviceability"]),
        (PickupController, "/pickups", ["pickups"]),
    ],
)
def test_controllers_are_tagged(controller, path, tags):
    assert issubclass(controller, Controller)
    assert controller.path == path
    assert controller.tags == tags
