"""
Tests for the background sweeper and the Celery sweep task.
"""
import asyncio
from unittest.mock import MagicMock, patch

import pytest

from app.core.idempotency import IdempotencyRecord, StoreUnavailable
from app.services.idempotency import IdempotencyCoordinator
from app.services.idempotency_store import MemoryIdempotencyStore
from app.services.idempotency_sweeper import IdempotencySweeper
from app.tasks.cleanup_tasks import sweep_idempotency_claims


def _claim(store, clock, fp, ttl_ms):
    now = clock()
    record = IdempotencyRecord("u1", "op", fp, created_at_ms=now, expires_at_ms=now + ttl_ms)
    store.claim(record.dedup_key, record, ttl_ms)
    return record


class TestSweeper:
    """Test IdempotencySweeper."""

    def test_run_once_reports_swept(self, memory_store, clock):
        _claim(memory_store, clock, "a", 100)
        live = _claim(memory_store, clock, "b", 10_000)
        on_swept = MagicMock()
        sweeper = IdempotencySweeper(memory_store, interval_seconds=60, on_swept=on_swept)

        clock.advance(100)
        assert sweeper.run_once() == 1
        on_swept.assert_called_once_with(1)
        assert memory_store.get(live.dedup_key) == live

    def test_run_once_survives_store_errors(self):
        store = MagicMock()
        store.sweep.side_effect = StoreUnavailable("down")
        sweeper = IdempotencySweeper(store, interval_seconds=60)

        assert sweeper.run_once() == 0

    def test_coordinator_counts_swept(self, memory_store, clock):
        coordinator = IdempotencyCoordinator(memory_store, default_ttl_ms=100)
        _claim(memory_store, clock, "a", 100)
        clock.advance(100)

        IdempotencySweeper(memory_store, interval_seconds=60, on_swept=coordinator.record_swept).run_once()
        assert coordinator.stats()["swept_total"] == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, memory_store):
        sweeper = IdempotencySweeper(memory_store, interval_seconds=60)
        assert not sweeper.running

        sweeper.start()
        sweeper.start()
        assert sweeper.running

        await sweeper.stop()
        assert not sweeper.running
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_loop_sweeps_periodically(self):
        store = MagicMock()
        store.sweep.return_value = 0
        sweeper = IdempotencySweeper(store, interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert store.sweep.call_count >= 1


class TestSweepTask:
    """Test the Celery sweep task."""

    def test_task_sweeps_shared_store(self, clock):
        store = MemoryIdempotencyStore(clock=clock)
        coordinator = IdempotencyCoordinator(store, default_ttl_ms=100)
        _claim(store, clock, "a", 100)
        clock.advance(100)

        with patch("app.tasks.cleanup_tasks.get_coordinator", return_value=coordinator):
            result = sweep_idempotency_claims()

        assert result == {"success": True, "swept": 1}
        assert coordinator.stats()["swept_total"] == 1
