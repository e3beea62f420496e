"""Time-of-day / day-of-week constraints for periodic events.

Accepted forms (weekday names are case-insensitive, full or three-letter)::

    "14:30"        every day at 14:30
    "9:05"         one-digit hours are fine
    "**:15"        every hour at minute 15 ("*:15" works too)
    "03:**"        every minute of the 03 hour
    "Mon 09:00"    Mondays at 09:00
    "friday 17:45"

Constraints are parsed when the event is registered, so a typo fails the
``every`` call instead of silently never firing.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .errors import ConfigurationError

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WEEKDAYS: dict[str, int] = {}
for _index, _name in enumerate(_WEEKDAYS):
    WEEKDAYS[_name] = _index
    WEEKDAYS[_name[:3]] = _index

_WITH_DAY = re.compile(r"\A([A-Za-z]+)\s+(.+)\Z")
_TIME = re.compile(r"\A(\d{1,2}|\*{1,2}):(\d\d|\*\*)\Z")


@dataclass(frozen=True)
class At:
    """A parsed constraint. ``None`` fields match any value.

    ``weekday`` follows :meth:`datetime.weekday` (Monday is 0).
    """

    minute: int | None = None
    hour: int | None = None
    weekday: int | None = None

    def __post_init__(self) -> None:
        if self.minute is not None and not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")
        if self.hour is not None and not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday out of range: {self.weekday}")

    @classmethod
    def parse(cls, constraint: str) -> At:
        """Parse a single constraint string.

        Raises:
            ConfigurationError: If ``constraint`` is not a recognised form
        """
        if not isinstance(constraint, str):
            raise ConfigurationError(f"at-constraint must be a string, got {constraint!r}")
        text = constraint.strip()

        weekday = None
        day_match = _WITH_DAY.match(text)
        if day_match:
            day_name = day_match.group(1).lower()
            if day_name not in WEEKDAYS:
                raise ConfigurationError(f"Unknown weekday in at-constraint: {constraint!r}")
            weekday = WEEKDAYS[day_name]
            text = day_match.group(2).strip()

        time_match = _TIME.match(text)
        if not time_match:
            raise ConfigurationError(f"Could not parse at-constraint: {constraint!r}")

        raw_hour, raw_minute = time_match.groups()
        hour = None if raw_hour.startswith("*") else int(raw_hour)
        minute = None if raw_minute == "**" else int(raw_minute)
        try:
            return cls(minute=minute, hour=hour, weekday=weekday)
        except ValueError as exc:
            raise ConfigurationError(f"Could not parse at-constraint: {constraint!r}", cause=exc) from exc

    def matches(self, moment: datetime) -> bool:
        """True when ``moment`` (already in the event's local zone) satisfies this constraint."""
        return (
            (self.minute is None or moment.minute == self.minute)
            and (self.hour is None or moment.hour == self.hour)
            and (self.weekday is None or moment.weekday() == self.weekday)
        )

    def __str__(self) -> str:
        hour = "**" if self.hour is None else f"{self.hour:02d}"
        minute = "**" if self.minute is None else f"{self.minute:02d}"
        if self.weekday is None:
            return f"{hour}:{minute}"
        return f"{_WEEKDAYS[self.weekday][:3].capitalize()} {hour}:{minute}"


def parse_constraints(value: str | Iterable[str] | None) -> tuple[At, ...]:
    """Parse the ``at`` option: one constraint, a list of them, or nothing.

    Duplicates are dropped; order of first appearance is kept.
    """
    if value is None:
        return ()
    if isinstance(value, (str, At)):
        entries = [value]
    else:
        try:
            entries = list(value)
        except TypeError as exc:
            raise ConfigurationError(f"Could not parse at-constraint: {value!r}", cause=exc) from exc
    if not entries:
        raise ConfigurationError("at-constraint list is empty")

    parsed: list[At] = []
    for constraint in entries:
        at = constraint if isinstance(constraint, At) else At.parse(constraint)
        if at not in parsed:
            parsed.append(at)
    return tuple(parsed)


__all__ = ["At", "WEEKDAYS", "parse_constraints"]
