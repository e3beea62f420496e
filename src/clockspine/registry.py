"""Event registry - the ordered collection of events a manager knows about.

Periodic events are keyed by ``job_id``; registering an id twice is an
error unless the caller asks to replace it. A replaced event keeps its
original slot, so evaluation order does not change. Triggered events live
in a separate list because several may share one trigger name. An id
names at most one event across both collections.
"""

from __future__ import annotations

from collections.abc import Iterator

from .errors import ConfigurationError
from .event import Event


class Registry:
    def __init__(self) -> None:
        self._periodic: dict[str, Event] = {}
        self._triggered: list[Event] = []

    def add(self, event: Event, *, replace: bool = False) -> Event | None:
        """Register a periodic event.

        Returns:
            The event that was replaced, if any

        Raises:
            ConfigurationError: If ``job_id`` is taken and ``replace`` is False
        """
        if self._is_trigger_id(event.job_id):
            raise ConfigurationError(
                f"Id {event.job_id!r} is already used by a triggered event"
            ).with_context(job_id=event.job_id)
        previous = self._periodic.get(event.job_id)
        if previous is not None and not replace:
            raise ConfigurationError(
                f"Event {event.job_id!r} is already registered; pass replace=True to override it"
            ).with_context(job_id=event.job_id)
        self._periodic[event.job_id] = event
        return previous

    def add_trigger(self, event: Event) -> None:
        """Register a triggered event. Ids are unique across both collections."""
        if event.job_id in self:
            raise ConfigurationError(
                f"Event {event.job_id!r} is already registered"
            ).with_context(job_id=event.job_id, trigger=event.trigger_name)
        self._triggered.append(event)

    def _is_trigger_id(self, job_id: str) -> bool:
        return any(existing.job_id == job_id for existing in self._triggered)

    def get(self, job_id: str) -> Event | None:
        return self._periodic.get(job_id)

    def remove(self, job_id: str) -> Event | None:
        event = self._periodic.pop(job_id, None)
        if event is not None:
            return event
        for index, candidate in enumerate(self._triggered):
            if candidate.job_id == job_id:
                return self._triggered.pop(index)
        return None

    def periodic(self) -> list[Event]:
        """Periodic events in registration order."""
        return list(self._periodic.values())

    def triggered(self, name: str | None = None) -> list[Event]:
        """Triggered events in registration order, optionally for one trigger name."""
        if name is None:
            return list(self._triggered)
        return [event for event in self._triggered if event.trigger_name == name]

    def all(self) -> list[Event]:
        return self.periodic() + self.triggered()

    def clear(self) -> None:
        self._periodic.clear()
        self._triggered.clear()

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._periodic or self._is_trigger_id(job_id)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._periodic) + len(self._triggered)


__all__ = ["Registry"]
