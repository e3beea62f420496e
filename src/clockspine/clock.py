"""Time sources for the tick loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CLOCK PROTOCOL                                                               │
│                                                                               │
│   now()            current timezone-aware UTC datetime                       │
│   sleep_until(t)   block until t (return at once if t is past)               │
│   wake()           interrupt a pending sleep_until (used by stop())          │
│   clear_wake()     drop an unconsumed wake (called as run() starts)          │
│                                                                               │
│  SystemClock   ── wall clock, sleeps on a threading.Event                    │
│  VirtualClock  ── test double; advance() walks every tick boundary and       │
│                   calls manager.tick(t), the same pass run() performs        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .durations import Duration, to_timedelta

if TYPE_CHECKING:
    from .manager import Manager


@runtime_checkable
class Clock(Protocol):
    """Protocol for pluggable time sources."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...

    def sleep_until(self, moment: datetime) -> None:
        """Suspend the caller until ``moment``; return immediately if it has passed."""
        ...

    def wake(self) -> None:
        """Cut short a pending ``sleep_until``."""
        ...

    def clear_wake(self) -> None:
        """Discard a ``wake`` that no sleep consumed."""
        ...


class SystemClock:
    """Wall-clock time with an interruptible sleep."""

    name = "system"

    def __init__(self) -> None:
        self._wake = threading.Event()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep_until(self, moment: datetime) -> None:
        # Event.wait may return a hair early; loop until the wall clock agrees
        while True:
            remaining = (moment - self.now()).total_seconds()
            if remaining <= 0:
                return
            if self._wake.wait(remaining):
                self._wake.clear()
                return

    def wake(self) -> None:
        self._wake.set()

    def clear_wake(self) -> None:
        self._wake.clear()


class VirtualClock:
    """Deterministic clock for tests.

    Time only moves when the test says so. Managers attached with
    :meth:`attach` are ticked at each of their tick boundaries that
    :meth:`advance` crosses, in time order.

    Example:
        >>> clock = VirtualClock()
        >>> manager = Manager(clock=clock)
        >>> manager.every(seconds(60), "heartbeat", job=print)
        >>> clock.attach(manager)
        >>> clock.advance(seconds(185))   # heartbeat fires at +60, +120, +180
    """

    name = "virtual"

    DEFAULT_START = datetime(2024, 1, 1, tzinfo=UTC)

    def __init__(self, start: datetime | None = None) -> None:
        start = start or self.DEFAULT_START
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        self._now = start
        self._lock = threading.Lock()
        self._drivers: list[list] = []  # [manager, next_tick]

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def sleep_until(self, moment: datetime) -> None:
        with self._lock:
            if moment > self._now:
                self._now = moment

    def wake(self) -> None:
        pass

    def clear_wake(self) -> None:
        pass

    def attach(self, manager: Manager) -> VirtualClock:
        """Drive ``manager.tick`` from :meth:`advance`; the first tick is one tick_length from now."""
        self._drivers.append([manager, self.now() + manager.tick_length])
        return self

    def detach(self, manager: Manager) -> None:
        self._drivers = [d for d in self._drivers if d[0] is not manager]

    def advance(self, duration: Duration) -> datetime:
        """Move time forward by ``duration``, ticking attached managers on the way.

        Exceptions raised by a tick (fatal dispatch errors) propagate to the
        caller, leaving the clock at the failing tick.

        Returns:
            The new current time
        """
        delta = to_timedelta(duration)
        if delta < timedelta(0):
            raise ValueError("VirtualClock cannot move backwards")
        target = self.now() + delta

        while self._drivers:
            driver = min(self._drivers, key=lambda d: d[1])
            manager, next_tick = driver
            if next_tick > target:
                break
            with self._lock:
                self._now = next_tick
            driver[1] = next_tick + manager.tick_length
            manager.tick(next_tick)

        with self._lock:
            self._now = target
        return target

    def set(self, moment: datetime) -> None:
        """Jump to ``moment`` without ticking (simulates a suspended process)."""
        with self._lock:
            if moment < self._now:
                raise ValueError("VirtualClock cannot move backwards")
            self._now = moment
        for driver in self._drivers:
            manager = driver[0]
            while driver[1] <= moment:
                driver[1] += manager.tick_length


__all__ = ["Clock", "SystemClock", "VirtualClock"]
