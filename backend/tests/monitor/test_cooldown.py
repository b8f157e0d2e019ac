from __future__ import annotations

from datetime import timedelta

import pytest

from backend.src.contracts.models import NotificationFrequency
from backend.src.monitor.cooldown import CooldownGate, cooldown_key
from backend.tests.fakes import T0, FakeClock, FakeStore, make_search


def _make_gate(
    store: FakeStore | None = None,
    clock: FakeClock | None = None,
    default_hours: float = 24,
) -> CooldownGate:
    return CooldownGate(store or FakeStore(), default_hours, now=clock or FakeClock())


# ── resolve_cooldown ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("frequency", "hours"),
    [
        (NotificationFrequency.INSTANT, 1),
        (NotificationFrequency.HOURLY, 1),
        (NotificationFrequency.DAILY, 24),
        (NotificationFrequency.WEEKLY, 168),
    ],
)
def test_frequency_maps_to_interval(frequency: NotificationFrequency, hours: int) -> None:
    gate = _make_gate()
    assert gate.resolve_cooldown(make_search(), frequency) == timedelta(hours=hours)


def test_never_has_no_interval() -> None:
    gate = _make_gate()
    assert gate.resolve_cooldown(make_search(), NotificationFrequency.NEVER) is None


def test_missing_frequency_uses_search_interval() -> None:
    gate = _make_gate()
    search = make_search(check_frequency_hours=6)
    assert gate.resolve_cooldown(search, None) == timedelta(hours=6)


def test_missing_frequency_falls_back_to_default() -> None:
    gate = _make_gate(default_hours=12)
    assert gate.resolve_cooldown(make_search(), None) == timedelta(hours=12)


# ── is_eligible ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_never_checked_search_is_eligible() -> None:
    gate = _make_gate()
    assert await gate.is_eligible(make_search(), NotificationFrequency.DAILY) is True


@pytest.mark.asyncio
async def test_never_frequency_blocks_even_without_record() -> None:
    gate = _make_gate()
    assert await gate.is_eligible(make_search(), NotificationFrequency.NEVER) is False


@pytest.mark.asyncio
async def test_daily_search_checked_ten_hours_ago_is_skipped() -> None:
    store = FakeStore()
    store.data[cooldown_key("search-1")] = (T0 - timedelta(hours=10)).isoformat()
    gate = _make_gate(store=store)

    assert await gate.is_eligible(make_search(), NotificationFrequency.DAILY) is False


@pytest.mark.asyncio
async def test_daily_search_checked_twenty_five_hours_ago_is_eligible() -> None:
    store = FakeStore()
    store.data[cooldown_key("search-1")] = (T0 - timedelta(hours=25)).isoformat()
    gate = _make_gate(store=store)

    assert await gate.is_eligible(make_search(), NotificationFrequency.DAILY) is True


@pytest.mark.asyncio
async def test_interval_boundary_is_inclusive() -> None:
    store = FakeStore()
    store.data[cooldown_key("search-1")] = (T0 - timedelta(hours=1)).isoformat()
    gate = _make_gate(store=store)

    assert await gate.is_eligible(make_search(), NotificationFrequency.HOURLY) is True


@pytest.mark.asyncio
async def test_naive_timestamp_is_read_as_utc() -> None:
    store = FakeStore()
    naive = (T0 - timedelta(hours=2)).replace(tzinfo=None)
    store.data[cooldown_key("search-1")] = naive.isoformat()
    gate = _make_gate(store=store)

    assert await gate.last_checked_at("search-1") == T0 - timedelta(hours=2)
    assert await gate.is_eligible(make_search(), NotificationFrequency.INSTANT) is True


@pytest.mark.asyncio
async def test_unparseable_record_counts_as_never_checked() -> None:
    store = FakeStore()
    store.data[cooldown_key("search-1")] = "yesterday-ish"
    gate = _make_gate(store=store)

    assert await gate.last_checked_at("search-1") is None
    assert await gate.is_eligible(make_search(), NotificationFrequency.WEEKLY) is True


# ── record_check ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_record_then_read_back_within_interval() -> None:
    clock = FakeClock()
    gate = _make_gate(clock=clock)
    search = make_search()

    checked_at = await gate.record_check(search, NotificationFrequency.DAILY)
    assert checked_at == T0
    assert await gate.is_eligible(search, NotificationFrequency.DAILY) is False

    clock.advance(hours=23, minutes=59)
    assert await gate.is_eligible(search, NotificationFrequency.DAILY) is False

    clock.advance(minutes=1)
    assert await gate.is_eligible(search, NotificationFrequency.DAILY) is True


@pytest.mark.asyncio
async def test_record_ttl_is_at_least_seven_days() -> None:
    store = FakeStore()
    gate = _make_gate(store=store)

    await gate.record_check(make_search(), NotificationFrequency.HOURLY)

    assert store.ttls[cooldown_key("search-1")] == 7 * 24 * 60 * 60


@pytest.mark.asyncio
async def test_record_ttl_outlives_long_interval() -> None:
    store = FakeStore()
    gate = _make_gate(store=store)

    await gate.record_check(make_search(check_frequency_hours=24 * 10), None)

    assert store.ttls[cooldown_key("search-1")] == 10 * 24 * 60 * 60
