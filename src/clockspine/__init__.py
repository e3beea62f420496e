"""
clockspine - an in-process, cron-like job scheduler.

Register periodic or triggerable jobs on a :class:`Manager` and run its
tick loop. Periodic events fire on a fixed grid (no drift), may be limited
to times of day with ``at``, gated by an ``if`` predicate, and run inline or
on worker threads. Job failures are routed to error handlers and never
reach the loop.

Quick Start:
    >>> from clockspine import Manager, minutes, days
    >>> manager = Manager()
    >>> manager.error_handler(lambda ctx: log_failure(ctx.job_id, ctx.exception))
    >>> manager.every(minutes(5), "feeds.refresh", job=lambda ctx: refresh())
    >>> manager.every(days(1), "reports.daily", at="06:00", job=send_report)
    >>> manager.run()
"""

__version__ = "0.1.0"

from .at import At, parse_constraints
from .clock import Clock, SystemClock, VirtualClock
from .dispatcher import Dispatcher
from .durations import (
    day,
    days,
    hour,
    hours,
    minute,
    minutes,
    second,
    seconds,
    to_timedelta,
    week,
    weeks,
)
from .errors import (
    ClockspineError,
    ConfigurationError,
    ErrorCategory,
    FatalDispatchError,
    RuntimeJobError,
    RuntimeStateError,
)
from .event import DispatchMode, Event, EventKind, JobContext, OverlapPolicy
from .manager import Manager, ManagerState, ManagerStats
from .registry import Registry
from .settings import ClockSettings

__all__ = [
    # Engine
    "Manager",
    "ManagerState",
    "ManagerStats",
    "Registry",
    "Dispatcher",
    # Events
    "Event",
    "EventKind",
    "DispatchMode",
    "OverlapPolicy",
    "JobContext",
    "At",
    "parse_constraints",
    # Clocks
    "Clock",
    "SystemClock",
    "VirtualClock",
    # Durations
    "seconds",
    "minutes",
    "hours",
    "days",
    "weeks",
    "second",
    "minute",
    "hour",
    "day",
    "week",
    "to_timedelta",
    # Errors
    "ClockspineError",
    "ConfigurationError",
    "RuntimeStateError",
    "RuntimeJobError",
    "FatalDispatchError",
    "ErrorCategory",
    # Settings
    "ClockSettings",
]
