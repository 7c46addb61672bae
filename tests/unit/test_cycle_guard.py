"""
Tests for CycleGuard - mutual exclusion of trading-cycle operations.
"""
import asyncio
import re

import pytest

from hedgebot.exceptions import CycleLockTimeout
from hedgebot.runtime.cycle_guard import CycleGuard


class TestCycleGuard:

    @pytest.fixture
    def guard(self):
        return CycleGuard(lock_timeout_seconds=0.05, history_size=3)

    def test_initial_state(self, guard):
        assert guard.current_cycle is None
        assert guard.locked is False
        assert guard.get_cycle_stats()["total_cycles"] == 0

    @pytest.mark.asyncio
    async def test_cycle_records_history(self, guard):
        async with guard.cycle("monitor") as state:
            assert guard.locked is True
            assert guard.current_cycle is state
            assert re.match(r"^cycle_\d{8}_\d{6}_[0-9a-f]{8}$", state.cycle_id)

        assert guard.locked is False
        assert guard.current_cycle is None
        assert state.is_complete is True
        assert guard.get_recent_cycles()[0]["name"] == "monitor"

    @pytest.mark.asyncio
    async def test_second_cycle_times_out_while_held(self, guard):
        async with guard.cycle("first"):
            with pytest.raises(CycleLockTimeout):
                async with guard.cycle("second"):
                    pass

        stats = guard.get_cycle_stats()
        assert stats["total_cycles"] == 1
        assert stats["skipped_cycles"] == 1

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, guard):
        with pytest.raises(RuntimeError):
            async with guard.cycle("failing"):
                raise RuntimeError("boom")

        assert guard.locked is False
        assert guard.get_cycle_stats()["failed_cycles"] == 1
        assert guard.cycle_history[-1].error == "RuntimeError: boom"

        async with guard.cycle("after"):
            pass

    @pytest.mark.asyncio
    async def test_waiting_cycle_runs_after_release(self):
        guard = CycleGuard(lock_timeout_seconds=1.0)
        order = []

        async def worker(name, delay):
            async with guard.cycle(name):
                order.append(f"{name}:start")
                await asyncio.sleep(delay)
                order.append(f"{name}:end")

        await asyncio.gather(worker("a", 0.02), worker("b", 0))

        assert order == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, guard):
        for i in range(5):
            async with guard.cycle(f"c{i}"):
                pass

        assert [c.name for c in guard.cycle_history] == ["c2", "c3", "c4"]
