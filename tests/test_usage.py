# tests/test_usage.py
import asyncio
from datetime import timedelta

import pytest

from relaybot.services.usage import UsageTracker


@pytest.mark.asyncio
async def test_ceiling_two_scenario(clock):
    # ceiling=2, window=10min: two actions pass, the third is refused,
    # and after 10 minutes the user may act again.
    u = UsageTracker(limit=2, window=timedelta(minutes=10), clock=clock)
    assert await u.can_act(7)
    await u.record_action(7)
    assert await u.can_act(7)
    await u.record_action(7)
    assert not await u.can_act(7)
    clock.advance(minutes=10)
    assert await u.can_act(7)


@pytest.mark.asyncio
async def test_window_boundary_and_time_until_reset(clock):
    # C actions at t..t+C-1 minutes; the (C+1)th at t+C is refused while t+C - t < W,
    # and time_until_reset equals W - (now - oldest).
    u = UsageTracker(limit=3, window=timedelta(minutes=10), clock=clock)
    for _ in range(3):
        assert await u.try_acquire(1)
        clock.advance(minutes=1)
    assert not await u.try_acquire(1)
    assert await u.time_until_reset(1) == timedelta(minutes=7)
    clock.advance(minutes=7)
    assert await u.time_until_reset(1) == timedelta(0)
    assert await u.try_acquire(1)


@pytest.mark.asyncio
async def test_time_until_reset_zero_under_limit(clock):
    u = UsageTracker(limit=2, window=timedelta(minutes=10), clock=clock)
    assert await u.time_until_reset(1) == timedelta(0)
    await u.record_action(1)
    assert await u.time_until_reset(1) == timedelta(0)


@pytest.mark.asyncio
async def test_users_are_independent(clock):
    u = UsageTracker(limit=1, window=timedelta(minutes=10), clock=clock)
    assert await u.try_acquire(1)
    assert not await u.try_acquire(1)
    assert await u.try_acquire(2)


@pytest.mark.asyncio
async def test_try_acquire_is_atomic_under_concurrency(clock):
    # Many concurrent attempts can never admit more than the limit.
    u = UsageTracker(limit=5, window=timedelta(minutes=10), clock=clock)
    results = await asyncio.gather(*(u.try_acquire(1) for _ in range(50)))
    assert sum(results) == 5


@pytest.mark.asyncio
async def test_sweep_drops_idle_users(clock):
    u = UsageTracker(limit=2, window=timedelta(minutes=10), clock=clock)
    await u.record_action(1)
    clock.advance(minutes=5)
    await u.record_action(2)
    clock.advance(minutes=6)
    assert await u.sweep() == 1
    # user 2 keeps its in-window action: one more is allowed, then the limit applies
    assert await u.try_acquire(2)
    assert not await u.try_acquire(2)


def test_invalid_arguments(clock):
    with pytest.raises(ValueError):
        UsageTracker(limit=0, clock=clock)
    with pytest.raises(ValueError):
        UsageTracker(window=timedelta(0), clock=clock)
