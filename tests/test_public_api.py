"""Tests for public API surface."""

from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import get_type_hints

import pytest

import litestar_delhivery


def test_version_is_set():
    """Package exposes __version__."""
    assert litestar_delhivery.__version__ == "0.1.0"


def test_py_typed_marker_exists():
    """PEP 561 py.typed marker file exists."""
    marker = (
        Path(__file__).resolve().parents[1]
        / "src"
        / "litestar_delhivery"
        / "py.typed"
    )
    assert marker.exists()


def test_all_exports_are_importable():
    """Every name in __all__ is importable."""
    for name in litestar_delhivery.__all__:
        attr = getattr(litestar_delhivery, name)
        assert attr is not None, f"{name} resolved to None"


def test_lazy_import_router_factory():
    assert callable(litestar_delhivery.create_delhivery_router)
    assert callable(litestar_delhivery.build_engine)


def test_lazy_import_classifier():
    result = litestar_delhivery.classify("DL", "Delivered")
    assert result.state == litestar_delhivery.CanonicalState.DELIVERED


def test_getattr_raises_for_unknown():
    """Unknown attribute raises AttributeError."""
    with pytest.raises(AttributeError, match="no_such_attribute"):
        litestar_delhivery.no_such_attribute  # noqa: B018


def test_lock_and_repository_accessors_are_typed():
    """py.typed consumers see concrete types on the engine seams."""
    from litestar_delhivery.classifier import state_rank
    from litestar_delhivery.lifecycle import ShipmentLifecycle
    from litestar_delhivery.operations import ShipmentOperations
    from litestar_delhivery.protocols import ShipmentRepository

    hold = get_type_hints(ShipmentLifecycle.hold)
    repository = get_type_hints(ShipmentOperations.repository.fget)

    assert hold["awb"] is str
    assert hold["return"] == AbstractAsyncContextManager[None]
    assert repository["return"] is ShipmentRepository
    assert get_type_hints(state_rank)["return"] is int
