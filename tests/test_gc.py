"""Tests for window garbage collection and the maintenance scheduler."""

import asyncio
import pytest
from unittest.mock import AsyncMock

from ipgate.app.core.config import LimiterConfig
from ipgate.app.exceptions import StoreUnavailableError
from ipgate.app.limiter import (
    GarbageCollector,
    MaintenanceScheduler,
    RateLimiterEngine,
    RequestIdentity,
)
from ipgate.app.store import (
    BLACKLIST_KEY,
    CONTROL_KEY,
    EXPIRES_KEY,
    InMemoryStateStore,
)


@pytest.fixture
def store():
    return InMemoryStateStore()


async def _seed_window(store, ip: str, expires_at: int, count: int) -> None:
    await store.hset(EXPIRES_KEY, ip, expires_at)
    await store.hset(CONTROL_KEY, ip, count)


class TestGarbageCollector:
    """Tests for GarbageCollector.sweep."""

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store):
        """Expired windows go, active ones stay."""
        await _seed_window(store, "10.0.0.1", 900, 4)
        await _seed_window(store, "10.0.0.2", 1000, 2)
        await _seed_window(store, "10.0.0.3", 1100, 1)

        removed = await GarbageCollector(store).sweep(now=1000)

        assert removed == 1
        assert await store.hgetall(EXPIRES_KEY) == {"10.0.0.2": "1000", "10.0.0.3": "1100"}
        assert await store.hgetall(CONTROL_KEY) == {"10.0.0.2": "2", "10.0.0.3": "1"}

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, store):
        """A second sweep has nothing left to delete."""
        await _seed_window(store, "10.0.0.1", 900, 4)
        await _seed_window(store, "10.0.0.2", 950, 1)
        collector = GarbageCollector(store)

        assert await collector.sweep(now=1000) == 2
        assert await collector.sweep(now=1000) == 0
        assert await store.hgetall(EXPIRES_KEY) == {}

    @pytest.mark.asyncio
    async def test_sweep_leaves_blacklist_alone(self, store):
        """Bans expire lazily and are not swept."""
        await store.hset(BLACKLIST_KEY, "10.0.0.1", 500)
        await GarbageCollector(store).sweep(now=1000)
        assert await store.hget(BLACKLIST_KEY, "10.0.0.1") == "500"

    @pytest.mark.asyncio
    async def test_sweep_treats_malformed_as_expired(self, store):
        """Unparseable expiry values are removed."""
        await _seed_window(store, "10.0.0.1", "garbage", 3)
        assert await GarbageCollector(store).sweep(now=1000) == 1
        assert await store.hget(CONTROL_KEY, "10.0.0.1") is None

    @pytest.mark.asyncio
    async def test_sweep_removes_counter_without_expiry(self, store):
        """A counter whose expiry field is gone is removed on the next sweep."""
        await _seed_window(store, "10.0.0.2", 1100, 1)
        await store.hset(CONTROL_KEY, "1.2.3.4", 1)
        collector = GarbageCollector(store)

        assert await collector.sweep(now=1000) == 1
        assert await store.hgetall(CONTROL_KEY) == {"10.0.0.2": "1"}
        assert await store.hgetall(EXPIRES_KEY) == {"10.0.0.2": "1100"}
        assert await collector.sweep(now=1000) == 0

    @pytest.mark.asyncio
    async def test_sweep_racing_edge_request_leaves_nothing_behind(self, store):
        """A request at the window edge during a sweep leaves no stray counter."""
        engine = RateLimiterEngine(store, LimiterConfig(time_interval=15, max_requests=30))
        await engine.consume(RequestIdentity(ip="1.2.3.4", url="/"), now=985)
        collector = GarbageCollector(store)

        await collector.sweep(now=1001)
        await engine.consume(RequestIdentity(ip="1.2.3.4", url="/"), now=1000)
        await collector.sweep(now=1016)

        assert await store.hgetall(EXPIRES_KEY) == {}
        assert await store.hgetall(CONTROL_KEY) == {}

    @pytest.mark.asyncio
    async def test_sweep_empty_store(self, store):
        """Sweeping nothing is fine."""
        assert await GarbageCollector(store).sweep(now=1000) == 0


class TestMaintenanceScheduler:
    """Tests for MaintenanceScheduler triggers."""

    @pytest.mark.asyncio
    async def test_maybe_schedule_runs_when_roll_hits(self, store):
        """A roll below the probability starts a background sweep."""
        await _seed_window(store, "10.0.0.1", 1, 1)
        scheduler = MaintenanceScheduler(GarbageCollector(store), probability=0.1, rng=lambda: 0.05)

        task = scheduler.maybe_schedule()

        assert task is not None
        assert await task == 1
        assert await store.hgetall(EXPIRES_KEY) == {}

    @pytest.mark.asyncio
    async def test_maybe_schedule_skips_when_roll_misses(self, store):
        """A roll at or above the probability does nothing."""
        scheduler = MaintenanceScheduler(GarbageCollector(store), probability=0.1, rng=lambda: 0.1)
        assert scheduler.maybe_schedule() is None

    @pytest.mark.asyncio
    async def test_zero_probability_never_schedules(self, store):
        """Probability 0 disables the per-request trigger."""
        scheduler = MaintenanceScheduler(GarbageCollector(store), probability=0.0, rng=lambda: 0.0)
        assert scheduler.maybe_schedule() is None

    @pytest.mark.asyncio
    async def test_only_one_sweep_at_a_time(self, store):
        """A running sweep is not duplicated."""
        collector = GarbageCollector(store)
        gate = asyncio.Event()

        async def slow_sweep(now=None):
            await gate.wait()
            return 0

        collector.sweep = slow_sweep
        scheduler = MaintenanceScheduler(collector, probability=1.0, rng=lambda: 0.0)

        first = scheduler.maybe_schedule()
        await asyncio.sleep(0)
        assert first is not None
        assert scheduler.maybe_schedule() is None

        gate.set()
        await first
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_sweep_errors_are_swallowed(self):
        """Store failures during a sweep are logged, not raised."""
        collector = AsyncMock(spec=GarbageCollector)
        collector.sweep.side_effect = StoreUnavailableError("hgetall")
        scheduler = MaintenanceScheduler(collector, probability=1.0, rng=lambda: 0.0)

        task = scheduler.maybe_schedule()
        assert await task == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_swallowed(self):
        """Any sweep failure stays out of request processing."""
        collector = AsyncMock(spec=GarbageCollector)
        collector.sweep.side_effect = RuntimeError("boom")
        scheduler = MaintenanceScheduler(collector)
        assert await scheduler.run_sweep() == 0

    @pytest.mark.asyncio
    async def test_periodic_timer_sweeps(self, store):
        """The timer loop sweeps every interval until stopped."""
        collector = AsyncMock(spec=GarbageCollector)
        collector.sweep.return_value = 0
        scheduler = MaintenanceScheduler(collector, probability=0.0, interval_seconds=1)
        scheduler._interval = 0.01

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert collector.sweep.await_count >= 1

    @pytest.mark.asyncio
    async def test_timer_disabled_by_zero_interval(self, store):
        """interval_seconds=0 does not start a timer."""
        scheduler = MaintenanceScheduler(GarbageCollector(store), interval_seconds=0)
        await scheduler.start()
        assert scheduler._timer_task is None
        await scheduler.stop()
