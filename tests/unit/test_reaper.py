"""
Unit tests for the lease reaper.
"""

import asyncio

import pytest

from budi_jobs.constants import inflight_queue
from budi_jobs.reaper.main import Reaper
from budi_jobs.store.memory import MemoryQueueStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def leased_store(clock) -> MemoryQueueStore:
    return MemoryQueueStore(clock=clock)


class TestReaper:
    """Tests for Reaper."""

    @pytest.mark.asyncio
    async def test_recovers_expired_leases(
        self, leased_store, clock, metrics, test_settings, make_envelope, analyze_record, fix_record
    ):
        """Test expired entries on every swept queue are returned."""
        await leased_store.push("analyze", make_envelope(analyze_record))
        await leased_store.push("fix", make_envelope(fix_record))
        await leased_store.reserve("analyze", 0, lease_seconds=10)
        await leased_store.reserve("fix", 0, lease_seconds=60)

        reaper = Reaper(leased_store, metrics=metrics, settings=test_settings)
        clock.now += 11

        assert await reaper.run_once() == 1
        assert await leased_store.length("analyze") == 1
        assert await leased_store.length(inflight_queue("fix")) == 1
        assert metrics.registry.get_sample_value(
            "lease_expired_total", {"queue": "analyze"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_explicit_now(self, leased_store, metrics, test_settings, make_envelope, analyze_record):
        await leased_store.push("analyze", make_envelope(analyze_record))
        delivery = await leased_store.reserve("analyze", 0, lease_seconds=10)

        reaper = Reaper(leased_store, queues=["analyze"], metrics=metrics, settings=test_settings)

        assert await reaper.run_once(now=delivery.lease_expires_at + 1) == 1

    @pytest.mark.asyncio
    async def test_orphan_grace(self, leased_store, clock, metrics, test_settings):
        """Test entries left in flight without a lease are recovered after the grace period."""
        await leased_store.push_raw(inflight_queue("master"), "orphan")
        reaper = Reaper(
            leased_store,
            queues=["master"],
            orphan_grace_seconds=5,
            metrics=metrics,
            settings=test_settings,
        )

        assert await reaper.run_once() == 0
        clock.now += 6
        assert await reaper.run_once() == 1

    @pytest.mark.asyncio
    async def test_start_stop(self, store, metrics, test_settings):
        """Test the loop survives an outage and stops when asked."""
        store.available = False
        reaper = Reaper(store, interval_seconds=0.01, metrics=metrics, settings=test_settings)

        task = asyncio.create_task(reaper.start())
        await asyncio.sleep(0.05)
        await reaper.stop()
        await asyncio.wait_for(task, 1)

        assert metrics.registry.get_sample_value(
            "store_errors_total", {"operation": "requeue_expired"}
        ) >= 1.0

    def test_explicit_zero_settings_kept(self, store, metrics, test_settings):
        """Test zero interval and grace are honoured rather than replaced by defaults."""
        reaper = Reaper(
            store,
            interval_seconds=0,
            orphan_grace_seconds=0,
            metrics=metrics,
            settings=test_settings,
        )

        assert reaper.interval == 0
        assert reaper.orphan_grace == 0

    def test_defaults_from_settings(self, store, metrics, test_settings):
        reaper = Reaper(store, metrics=metrics, settings=test_settings)

        assert reaper.interval == test_settings.reaper_interval_seconds
        assert reaper.orphan_grace == 30.0

    @pytest.mark.asyncio
    async def test_zero_grace_requeues_orphan_at_once(self, leased_store, metrics, test_settings):
        await leased_store.push_raw(inflight_queue("fix"), "orphan")
        reaper = Reaper(
            leased_store,
            queues=["fix"],
            orphan_grace_seconds=0,
            metrics=metrics,
            settings=test_settings,
        )

        assert await reaper.run_once() == 1
