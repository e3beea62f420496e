"""
Duration helpers for writing schedule periods.

    every(minutes(5), "feeds.refresh")
    every(days(1), "reports.daily", {"at": "06:00"})

All helpers return :class:`datetime.timedelta`. Plain ints and floats are
accepted wherever a duration is expected and are read as seconds.
"""

from __future__ import annotations

from datetime import timedelta

Duration = timedelta | int | float


def seconds(n: float) -> timedelta:
    return timedelta(seconds=n)


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def days(n: float) -> timedelta:
    return timedelta(days=n)


def weeks(n: float) -> timedelta:
    return timedelta(weeks=n)


# Singular aliases read better for n == 1: ``every(hour(1), ...)``
second = seconds
minute = minutes
hour = hours
day = days
week = weeks


def to_timedelta(value: Duration) -> timedelta:
    """Coerce a duration-like value to ``timedelta``.

    Raises:
        TypeError: If ``value`` is not a timedelta or a real number
    """
    if isinstance(value, timedelta):
        return value
    # bool is an int subclass but never a meaningful duration
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected a duration (timedelta or seconds), got {value!r}")
    return timedelta(seconds=value)


__all__ = [
    "Duration",
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
]
