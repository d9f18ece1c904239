"""Tests for call budgets and the cache helper."""

import pytest

from litestar_delhivery.exceptions import QuotaExceededError
from litestar_delhivery.governor import (
    DEFAULT_QUOTAS,
    FETCH_WAYBILL,
    PINCODE_SERVICEABILITY,
    TRACK,
    RateGovernor,
)
from litestar_delhivery.memory import InMemoryCacheStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def test_default_quotas():
    assert DEFAULT_QUOTAS[TRACK] == 750
    assert DEFAULT_QUOTAS[FETCH_WAYBILL] == 5
    assert DEFAULT_QUOTAS[PINCODE_SERVICEABILITY] == 4500


def test_budget_is_spent_and_refunded_by_window(clock):
    governor = RateGovernor(InMemoryCacheStore(), clock=clock)

    for _ in range(5):
        governor.acquire(FETCH_WAYBILL)

    assert governor.remaining(FETCH_WAYBILL) == 0
    assert governor.should_throttle(FETCH_WAYBILL)
    with pytest.raises(QuotaExceededError) as exc_info:
        governor.acquire(FETCH_WAYBILL)
    assert exc_info.value.endpoint == FETCH_WAYBILL

    clock.now += 299
    assert governor.should_throttle(FETCH_WAYBILL)
    clock.now += 2
    assert governor.remaining(FETCH_WAYBILL) == 5
    governor.acquire(FETCH_WAYBILL)


def test_unknown_endpoints_are_unlimited(clock):
    governor = RateGovernor(InMemoryCacheStore(), clock=clock)
    for _ in range(100):
        governor.acquire("edit")
    assert governor.remaining("edit") is None
    assert not governor.should_throttle("edit")


def test_custom_quotas_override_defaults(clock):
    governor = RateGovernor(
        InMemoryCacheStore(), quotas={TRACK: 1}, clock=clock
    )
    governor.record_call(TRACK)
    assert governor.should_throttle(TRACK)
    assert governor.remaining(FETCH_WAYBILL) is None


async def test_cached_or_fetch_calls_once_within_ttl(clock):
    cache = InMemoryCacheStore(clock=clock)
    governor = RateGovernor(cache, clock=clock)
    calls = []

    async def fetch():
        calls.append(1)
        return {"pincode": "560038", "is_serviceable": True}

    first = await governor.cached_or_fetch("svc:560038", 60, fetch)
    second = await governor.cached_or_fetch("svc:560038", 60, fetch)
    assert first == second
    assert len(calls) == 1

    clock.now += 61
    await governor.cached_or_fetch("svc:560038", 60, fetch)
    assert len(calls) == 2


async def test_cache_store_round_trip_and_delete(clock):
    cache = InMemoryCacheStore(clock=clock)
    await cache.set("k", ["a"], ttl=None)
    assert await cache.get("k") == ["a"]
    await cache.delete("k")
    assert await cache.get("k") is None
