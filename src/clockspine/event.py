"""
Events - scheduling rules and the due-time computation.

An :class:`Event` binds a job id to either a repeating period or a trigger
name. Periodic events decide on every tick whether they are due; triggered
events are only ever dispatched by ``Manager.fire``.

Due-time evaluation (per tick at time ``t``):
    ::

        unconstrained                          at-constrained
        ─────────────                          ──────────────
        next = last_scheduled + period         local = t in event tz
        t < next      → not due                no constraint matches → not due
        t >= next     → due                    minute already fired  → not due
          last_scheduled += k * period         t < last + period     → not due
          (k = whole periods elapsed;          otherwise due
           missed boundaries are dropped)        last_scheduled = minute(t)

    The predicate (``if`` option) is checked afterwards by the manager;
    a false predicate skips the firing but does not roll back the state
    change above.

Why a grid:
    ``last_scheduled`` is never taken from the moment a job finishes, so a
    slow dispatch cannot push later firings later. Firing instants stay on
    ``anchor, anchor + period, anchor + 2*period, ...``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Any

from .at import At
from .errors import RuntimeJobError

Job = Callable[["JobContext"], Any]
ErrorHandler = Callable[["JobContext"], Any]
Predicate = Callable[[datetime], bool]
Matcher = Callable[[Any], bool]


class EventKind(str, Enum):
    PERIODIC = "periodic"
    TRIGGERED = "triggered"


class DispatchMode(str, Enum):
    """How the dispatcher runs a job."""

    BLOCKING = "blocking"  # inline, the loop waits
    DETACHED = "detached"  # worker thread, the loop moves on


class OverlapPolicy(str, Enum):
    """What to do with a detached job whose previous run is still going."""

    ALLOW = "allow"
    SKIP_IF_RUNNING = "skip"


@dataclass
class JobContext:
    """The single argument passed to jobs and error handlers.

    Attributes:
        job_id: Id of the event being run
        scheduled_at: Grid boundary (or fire time) the run belongs to
        fired_at: Clock time when the dispatcher invoked the job
        user_options: Opaque options given at registration
        payload: Value passed to ``fire`` (triggered events only)
        trigger: Trigger name (triggered events only)
        error: Set when the context is handed to an error handler
    """

    job_id: str
    scheduled_at: datetime
    fired_at: datetime
    user_options: dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    trigger: str | None = None
    error: RuntimeJobError | None = None

    @property
    def exception(self) -> BaseException | None:
        """The original exception raised by the job, if any."""
        return self.error.cause if self.error else None


class Event:
    """A scheduling rule. Built by ``Manager.every`` / ``Manager.on``."""

    def __init__(
        self,
        job_id: str,
        kind: EventKind,
        *,
        period: timedelta | None = None,
        at_constraints: tuple[At, ...] = (),
        predicate: Predicate | None = None,
        job: Job | None = None,
        error_handler: ErrorHandler | None = None,
        dispatch_mode: DispatchMode = DispatchMode.BLOCKING,
        overlap_policy: OverlapPolicy = OverlapPolicy.ALLOW,
        tz: tzinfo | None = None,
        user_options: dict[str, Any] | None = None,
        trigger_name: str | None = None,
        matcher: Matcher | None = None,
        guard: Callable[[str], None] | None = None,
    ) -> None:
        self.job_id = job_id
        self.kind = kind
        self.period = period
        self.at_constraints = at_constraints
        self.predicate = predicate
        self.job = job
        self.error_handler = error_handler
        self.dispatch_mode = dispatch_mode
        self.overlap_policy = overlap_policy
        self.tz = tz
        self.user_options = dict(user_options or {})
        self.trigger_name = trigger_name
        self.matcher = matcher
        # Owning manager's mutability check; raises while it is running
        self._guard = guard

        self.last_scheduled: datetime | None = None
        self.running = False
        self.missed_boundaries = 0
        self._running_lock = threading.Lock()

    # === Fluent configuration ===

    def _check_mutable(self, action: str) -> None:
        if self._guard is not None:
            self._guard(f"Event.{action}")

    def on_error(self, handler: ErrorHandler) -> Event:
        """Attach an event-specific error handler.

        Raises:
            RuntimeStateError: If the owning manager is running
        """
        self._check_mutable("on_error")
        self.error_handler = handler
        return self

    def with_overlap(self, policy: OverlapPolicy | str) -> Event:
        self._check_mutable("with_overlap")
        self.overlap_policy = OverlapPolicy(policy)
        return self

    def detached(self, overlap: OverlapPolicy | str | None = None) -> Event:
        """Run this event on a worker thread."""
        self._check_mutable("detached")
        self.dispatch_mode = DispatchMode.DETACHED
        if overlap is not None:
            self.overlap_policy = OverlapPolicy(overlap)
        return self

    # === Properties ===

    @property
    def is_periodic(self) -> bool:
        return self.kind is EventKind.PERIODIC

    @property
    def is_constrained(self) -> bool:
        return bool(self.at_constraints)

    @property
    def next_boundary(self) -> datetime | None:
        """Earliest time the event can next become due (None for triggered/unanchored events)."""
        if not self.is_periodic or self.last_scheduled is None:
            return None
        return self.last_scheduled + self.period

    # === Due-time evaluation ===

    def anchor(self, moment: datetime) -> None:
        """Start the firing grid at ``moment``; the first firing is one period later."""
        if not self.is_constrained:
            self.last_scheduled = moment

    def local_time(self, moment: datetime, default_tz: tzinfo | None = None) -> datetime:
        """``moment`` expressed in the event's zone (falling back to ``default_tz``)."""
        zone = self.tz or default_tz
        return moment.astimezone(zone) if zone is not None else moment

    def is_candidate(self, now: datetime, default_tz: tzinfo | None = None) -> bool:
        """Decide whether the event is due at ``now``, advancing ``last_scheduled`` if so.

        Only the tick loop calls this. The predicate is not evaluated here.
        """
        if not self.is_periodic:
            return False
        if self.is_constrained:
            return self._constrained_due(now, default_tz)
        return self._grid_due(now)

    def _grid_due(self, now: datetime) -> bool:
        if self.last_scheduled is None:
            self.last_scheduled = now
            return False

        if now < self.last_scheduled + self.period:
            return False

        elapsed_periods = (now - self.last_scheduled) // self.period
        self.missed_boundaries = elapsed_periods - 1
        self.last_scheduled += elapsed_periods * self.period
        return True

    def _constrained_due(self, now: datetime, default_tz: tzinfo | None) -> bool:
        local = self.local_time(now, default_tz)
        if not any(at.matches(local) for at in self.at_constraints):
            return False

        minute = now.replace(second=0, microsecond=0)
        if self.last_scheduled is not None:
            if minute <= self.last_scheduled:
                return False
            if now < self.last_scheduled + self.period:
                return False

        self.missed_boundaries = 0
        self.last_scheduled = minute
        return True

    def check_predicate(self, now: datetime, default_tz: tzinfo | None = None) -> bool:
        if self.predicate is None:
            return True
        return bool(self.predicate(self.local_time(now, default_tz)))

    def matches_payload(self, payload: Any) -> bool:
        if self.matcher is None:
            return True
        return bool(self.matcher(payload))

    # === Detached bookkeeping (called from worker threads) ===

    def try_mark_running(self) -> bool:
        """Set ``running`` unless it is already set. Returns False when already running."""
        with self._running_lock:
            if self.running:
                return False
            self.running = True
            return True

    def mark_finished(self) -> None:
        with self._running_lock:
            self.running = False

    # === Introspection ===

    def describe(self) -> dict[str, Any]:
        """Plain-dict summary for logging and the CLI."""
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "period_seconds": self.period.total_seconds() if self.period else None,
            "at": [str(at) for at in self.at_constraints],
            "trigger": self.trigger_name,
            "dispatch_mode": self.dispatch_mode.value,
            "overlap_policy": self.overlap_policy.value,
            "tz": str(self.tz) if self.tz else None,
            "last_scheduled": self.last_scheduled.isoformat() if self.last_scheduled else None,
            "running": self.running,
        }

    def __repr__(self) -> str:
        if self.is_periodic:
            return f"Event({self.job_id!r}, every={self.period}, at={[str(a) for a in self.at_constraints]})"
        return f"Event({self.job_id!r}, on={self.trigger_name!r})"

    def __str__(self) -> str:
        return self.job_id


__all__ = [
    "Event",
    "EventKind",
    "DispatchMode",
    "OverlapPolicy",
    "JobContext",
    "Job",
    "ErrorHandler",
    "Predicate",
    "Matcher",
]
