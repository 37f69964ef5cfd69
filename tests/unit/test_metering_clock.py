"""Unit tests for the metering clock."""
import asyncio
import pytest

from app.services.call_session.clock import MeteringClock


class TestMeteringClock:
    """Test tick scheduling."""

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            MeteringClock(interval_seconds=0)

    @pytest.mark.asyncio
    async def test_ticks_repeat(self):
        """on_tick is invoked once per elapsed interval."""
        clock = MeteringClock(interval_seconds=0.01)
        ticks = []

        async def on_tick(session_id):
            ticks.append(session_id)

        clock.start("s1", on_tick)
        await asyncio.sleep(0.08)
        clock.stop("s1")

        assert len(ticks) >= 3
        assert set(ticks) == {"s1"}

    @pytest.mark.asyncio
    async def test_no_tick_after_stop(self):
        clock = MeteringClock(interval_seconds=0.01)
        ticks = []

        async def on_tick(session_id):
            ticks.append(session_id)

        clock.start("s1", on_tick)
        await asyncio.sleep(0.035)
        clock.stop("s1")
        count = len(ticks)
        await asyncio.sleep(0.05)

        assert len(ticks) == count
        assert not clock.is_running("s1")

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        clock = MeteringClock(interval_seconds=0.01)

        async def on_tick(session_id):
            pass

        clock.start("s1", on_tick)
        clock.stop("s1")
        clock.stop("s1")
        clock.stop("never-started")

        assert clock.active_count == 0

    @pytest.mark.asyncio
    async def test_slow_tick_is_skipped_not_queued(self):
        """While one tick is still running, later intervals are dropped."""
        clock = MeteringClock(interval_seconds=0.01)
        running = 0
        max_running = 0
        started = 0

        async def on_tick(session_id):
            nonlocal running, max_running, started
            started += 1
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(0.05)
            running -= 1

        clock.start("s1", on_tick)
        await asyncio.sleep(0.12)
        clock.stop("s1")

        assert max_running == 1
        assert started <= 3
        assert clock.skipped_count > 0

    @pytest.mark.asyncio
    async def test_stop_leaves_in_flight_tick_running(self):
        clock = MeteringClock(interval_seconds=0.01)
        release = asyncio.Event()
        finished = []

        async def on_tick(session_id):
            await release.wait()
            finished.append(session_id)

        clock.start("s1", on_tick)
        await asyncio.sleep(0.02)
        in_flight = clock.in_flight("s1")
        assert in_flight is not None

        clock.stop("s1")
        release.set()
        await in_flight

        assert finished == ["s1"]

    @pytest.mark.asyncio
    async def test_sessions_tick_independently(self):
        clock = MeteringClock(interval_seconds=0.01)
        ticks = {"a": 0, "b": 0}

        async def on_tick(session_id):
            ticks[session_id] += 1

        clock.start("a", on_tick)
        clock.start("b", on_tick)
        await asyncio.sleep(0.035)
        clock.stop("a")
        a_count = ticks["a"]
        await asyncio.sleep(0.035)
        clock.stop_all()

        assert ticks["a"] == a_count
        assert ticks["b"] > a_count

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_clock_running(self):
        clock = MeteringClock(interval_seconds=0.01)
        calls = 0

        async def on_tick(session_id):
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        clock.start("s1", on_tick)
        await asyncio.sleep(0.06)
        clock.stop("s1")

        assert calls >= 2
        assert clock.failed_count >= 1
