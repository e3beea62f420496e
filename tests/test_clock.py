"""Tests for SystemClock and VirtualClock."""

import threading
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from clockspine.clock import Clock, SystemClock, VirtualClock

T0 = VirtualClock.DEFAULT_START


def fake_manager(tick_seconds: float) -> MagicMock:
    manager = MagicMock()
    manager.tick_length = timedelta(seconds=tick_seconds)
    return manager


class TestSystemClock:
    def test_implements_protocol(self):
        clock = SystemClock()
        assert isinstance(clock, Clock)
        assert clock.name == "system"

    def test_now_is_aware_utc(self):
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_sleep_until_past_returns_immediately(self):
        clock = SystemClock()
        started = time.monotonic()
        clock.sleep_until(clock.now() - timedelta(seconds=10))
        assert time.monotonic() - started < 0.5

    @pytest.mark.slow
    def test_sleep_until_waits(self):
        clock = SystemClock()
        target = clock.now() + timedelta(milliseconds=50)
        clock.sleep_until(target)
        assert clock.now() >= target

    def test_wake_interrupts_sleep(self):
        clock = SystemClock()
        timer = threading.Timer(0.05, clock.wake)
        timer.start()
        started = time.monotonic()
        clock.sleep_until(clock.now() + timedelta(seconds=10))
        timer.join()
        assert time.monotonic() - started < 5


    @pytest.mark.slow
    def test_clear_wake_discards_pending_wake(self):
        clock = SystemClock()
        clock.wake()
        clock.clear_wake()
        target = clock.now() + timedelta(milliseconds=50)
        clock.sleep_until(target)
        assert clock.now() >= target


class TestVirtualClock:
    def test_implements_protocol(self):
        assert isinstance(VirtualClock(), Clock)

    def test_default_start(self):
        assert VirtualClock().now() == datetime(2024, 1, 1, tzinfo=UTC)

    def test_naive_start_is_utc(self):
        clock = VirtualClock(datetime(2024, 6, 1, 12, 0))
        assert clock.now() == datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def test_advance_without_managers(self):
        clock = VirtualClock(T0)
        assert clock.advance(90) == T0 + timedelta(seconds=90)
        assert clock.now() == T0 + timedelta(seconds=90)

    def test_cannot_move_backwards(self):
        clock = VirtualClock(T0)
        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(T0 - timedelta(seconds=1))

    def test_sleep_until_jumps_forward_only(self):
        clock = VirtualClock(T0)
        clock.sleep_until(T0 + timedelta(seconds=5))
        clock.sleep_until(T0)
        assert clock.now() == T0 + timedelta(seconds=5)

    def test_advance_ticks_each_boundary(self):
        clock = VirtualClock(T0)
        manager = fake_manager(10)
        clock.attach(manager)

        clock.advance(35)

        ticks = [c.args[0] for c in manager.tick.call_args_list]
        assert ticks == [T0 + timedelta(seconds=s) for s in (10, 20, 30)]
        assert clock.now() == T0 + timedelta(seconds=35)

    def test_now_during_tick_is_the_boundary(self):
        clock = VirtualClock(T0)
        manager = fake_manager(10)
        seen = []
        manager.tick.side_effect = lambda t: seen.append((t, clock.now()))
        clock.attach(manager).advance(20)
        assert all(t == now for t, now in seen)

    def test_interleaves_managers_in_time_order(self):
        clock = VirtualClock(T0)
        order = []
        fast, slow = fake_manager(10), fake_manager(15)
        fast.tick.side_effect = lambda t: order.append(("fast", t))
        slow.tick.side_effect = lambda t: order.append(("slow", t))
        clock.attach(fast)
        clock.attach(slow)

        clock.advance(30)

        seconds_seen = [(name, int((t - T0).total_seconds())) for name, t in order]
        assert seconds_seen == [("fast", 10), ("slow", 15), ("fast", 20), ("fast", 30), ("slow", 30)]

    def test_set_skips_ticks(self):
        clock = VirtualClock(T0)
        manager = fake_manager(10)
        clock.attach(manager)

        clock.set(T0 + timedelta(seconds=95))
        manager.tick.assert_not_called()

        clock.advance(5)
        manager.tick.assert_called_once_with(T0 + timedelta(seconds=100))

    def test_detach(self):
        clock = VirtualClock(T0)
        manager = fake_manager(1)
        clock.attach(manager)
        clock.detach(manager)
        clock.advance(10)
        manager.tick.assert_not_called()

    def test_tick_errors_propagate(self):
        clock = VirtualClock(T0)
        manager = fake_manager(10)
        manager.tick.side_effect = RuntimeError("fatal")
        clock.attach(manager)

        with pytest.raises(RuntimeError):
            clock.advance(60)
        assert clock.now() == T0 + timedelta(seconds=10)
