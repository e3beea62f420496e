"""
Manager - the scheduling engine's sole orchestrator.

Manifesto:
    One object owns the schedule: the registry, the default handlers, the
    tick length and the loop. The schedule is built while the manager is
    idle and frozen while it runs; any attempt to change it mid-loop fails
    fast instead of racing the tick.

┌──────────────────────────────────────────────────────────────────────────────┐
│  MANAGER LIFECYCLE                                                            │
│                                                                               │
│     configure / handler / error_handler / every / on / clear                 │
│                  │  (IDLE or STOPPED only)                                    │
│                  ▼                                                            │
│   ┌────────┐   run()   ┌─────────┐   stop() / fatal error   ┌─────────┐     │
│   │  IDLE  │ ────────► │ RUNNING │ ───────────────────────► │ STOPPED │     │
│   └────────┘           └─────────┘                          └─────────┘     │
│        ▲                                                          │          │
│        └──────────────────────── clear() ─────────────────────────┘          │
│                                                                               │
│   run():                                                                      │
│     start = clock.now()                                                       │
│     loop:                                                                     │
│        tick(clock.now())          evaluate events in registration order,     │
│                                   dispatch the due ones                       │
│        clock.sleep_until(start + k * tick_length)                            │
│                                                                               │
│   fire(name, payload) runs triggered events, independent of the loop.        │
└──────────────────────────────────────────────────────────────────────────────┘

Example:
    >>> from clockspine import Manager, days, minutes
    >>> manager = Manager(tick_length=1)
    >>> manager.error_handler(lambda ctx: print("failed:", ctx.exception))
    >>> manager.every(minutes(5), "feeds.refresh", job=lambda ctx: refresh())
    >>> manager.every(days(1), "reports.daily", at="06:00", tz="Europe/Berlin", job=report)
    >>> manager.on("user.signup", handler=lambda ctx: welcome(ctx.payload))
    >>> manager.run()
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .at import parse_constraints
from .clock import Clock, SystemClock
from .dispatcher import Dispatcher
from .durations import Duration, to_timedelta
from .errors import ClockspineError, ConfigurationError, RuntimeStateError
from .event import (
    DispatchMode,
    ErrorHandler,
    Event,
    EventKind,
    Job,
    OverlapPolicy,
)
from .logging import as_structured, get_logger
from .registry import Registry
from .settings import ClockSettings, ManagerOptions, resolve_tz

DEFAULT_TICK_LENGTH = timedelta(seconds=1)

EVERY_OPTIONS = frozenset({"at", "if", "thread", "overlap", "tz", "replace"})
ON_OPTIONS = frozenset({"match", "thread", "overlap", "id"})


class ManagerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class ManagerStats:
    """Counters for the tick loop. Updated from worker threads, hence the lock."""

    tick_count: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_tick(self, now: datetime) -> None:
        with self._lock:
            self.tick_count += 1
            self.last_tick = now

    def record_dispatch(self) -> None:
        with self._lock:
            self.dispatched += 1

    def record_skip(self) -> None:
        with self._lock:
            self.skipped += 1

    def record_failure(self, error: ClockspineError) -> None:
        with self._lock:
            self.failed += 1
            self.last_error = error.message

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tick_count": self.tick_count,
                "dispatched": self.dispatched,
                "skipped": self.skipped,
                "failed": self.failed,
                "last_tick": self.last_tick.isoformat() if self.last_tick else None,
                "last_error": self.last_error,
            }


class Manager:
    """Owns the registry, defaults, tick length and run loop.

    Args:
        clock: Time source (default: :class:`SystemClock`)
        **options: Anything :meth:`configure` accepts
    """

    def __init__(self, clock: Clock | None = None, **options: Any) -> None:
        self.clock: Clock = clock or SystemClock()
        self.registry = Registry()
        self.default_job: Job | None = None
        self.default_error_handler: ErrorHandler | None = None
        self.tick_length: timedelta = DEFAULT_TICK_LENGTH
        self.max_concurrent_detached: int | None = None
        self.default_dispatch_mode = DispatchMode.BLOCKING
        self.tz = None
        self.logger = get_logger(__name__)
        self.stats = ManagerStats()
        self.dispatcher = Dispatcher(self)

        self._state = ManagerState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()

        if options:
            self.configure(options)

    @classmethod
    def from_settings(
        cls, settings: ClockSettings | None = None, clock: Clock | None = None
    ) -> Manager:
        """Build a manager from environment-driven :class:`ClockSettings`."""
        settings = settings or ClockSettings()
        return cls(clock=clock, **settings.manager_options())

    # === State ===

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ManagerState.RUNNING

    @property
    def events(self) -> list[Event]:
        return self.registry.all()

    def get(self, job_id: str) -> Event | None:
        return self.registry.get(job_id)

    def _ensure_mutable(self, action: str) -> None:
        if self._state is ManagerState.RUNNING:
            raise RuntimeStateError(
                f"{action}() is not allowed while the manager is running"
            )

    # === Configuration ===

    def configure(self, options: dict[str, Any] | None = None, **kwargs: Any) -> Manager:
        """Set loop-wide options.

        Recognised: ``tick_length`` (duration), ``max_concurrent_detached``
        (int or None), ``logger``, ``thread`` (default dispatch mode for
        ``every``), ``tz``, ``handler``, ``error_handler``.

        Raises:
            RuntimeStateError: If the manager is running
            ConfigurationError: On unknown keys or invalid values
        """
        self._ensure_mutable("configure")
        merged = {**(options or {}), **kwargs}
        try:
            parsed = ManagerOptions(**merged)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid manager options: {exc}", cause=exc) from exc

        for name in parsed.model_fields_set:
            value = getattr(parsed, name)
            if name == "tick_length":
                self.tick_length = value or DEFAULT_TICK_LENGTH
            elif name == "max_concurrent_detached":
                self.max_concurrent_detached = value
            elif name == "logger":
                self.logger = as_structured(value) if value is not None else get_logger(__name__)
            elif name == "thread":
                self.default_dispatch_mode = DispatchMode.DETACHED if value else DispatchMode.BLOCKING
            elif name == "tz":
                self.tz = value
            elif name == "handler":
                self.default_job = value
            elif name == "error_handler":
                self.default_error_handler = value

        self.logger.debug(
            "manager_configured",
            options=sorted(parsed.model_fields_set),
            tick_length=self.tick_length.total_seconds(),
        )
        return self

    def handler(self, job: Job) -> Job:
        """Set the default job, used by events registered without one.

        Returns ``job`` so it can be used as a decorator.
        """
        self._ensure_mutable("handler")
        if not callable(job):
            raise ConfigurationError(f"Default handler must be callable, got {job!r}")
        self.default_job = job
        return job

    def error_handler(self, handler: ErrorHandler) -> ErrorHandler:
        """Set the default error handler. Returns ``handler`` (decorator-friendly)."""
        self._ensure_mutable("error_handler")
        if not callable(handler):
            raise ConfigurationError(f"Error handler must be callable, got {handler!r}")
        self.default_error_handler = handler
        return handler

    # === Registration ===

    def every(
        self,
        period: Duration,
        job_id: str,
        options: dict[str, Any] | None = None,
        user_options: dict[str, Any] | None = None,
        job: Job | None = None,
        **kwargs: Any,
    ) -> Event:
        """Register a periodic event and return it.

        Options (dict or keyword arguments; use ``if_`` for the predicate
        keyword): ``at``, ``if``, ``thread``, ``overlap``, ``tz``, ``replace``.

        The first unconstrained firing happens one ``period`` after
        registration. At-constrained events fire at the first matching minute.

        Raises:
            ConfigurationError: Non-positive period, bad option, unparseable
                ``at``, duplicate id without ``replace``, or no job at all
            RuntimeStateError: If the manager is running
        """
        self._ensure_mutable("every")
        self._check_id(job_id, "job_id")
        opts = self._event_options(options, kwargs, EVERY_OPTIONS, "every")

        try:
            period_td = to_timedelta(period)
        except TypeError as exc:
            raise ConfigurationError(str(exc), cause=exc).with_context(job_id=job_id) from exc
        if period_td <= timedelta(0):
            raise ConfigurationError(
                f"Period must be positive, got {period_td}"
            ).with_context(job_id=job_id)

        try:
            at_constraints = parse_constraints(opts.get("at"))
        except ConfigurationError as exc:
            raise exc.with_context(job_id=job_id)

        predicate = opts.get("if")
        if predicate is not None and not callable(predicate):
            raise ConfigurationError("'if' option must be callable").with_context(job_id=job_id)

        self._check_job(job, job_id)
        mode, overlap = self._dispatch_options(opts, job_id, self.default_dispatch_mode)

        event = Event(
            job_id,
            EventKind.PERIODIC,
            period=period_td,
            at_constraints=at_constraints,
            predicate=predicate,
            job=job,
            dispatch_mode=mode,
            overlap_policy=overlap,
            tz=self._event_tz(opts.get("tz"), job_id),
            user_options=user_options,
            guard=self._ensure_mutable,
        )
        event.anchor(self.clock.now())

        replaced = self.registry.add(event, replace=bool(opts.get("replace", False)))
        self.logger.info(
            "event_replaced" if replaced else "event_registered",
            job_id=job_id,
            period_seconds=period_td.total_seconds(),
            at=[str(at) for at in at_constraints],
            mode=mode.value,
        )
        return event

    def on(
        self,
        trigger_name: str,
        options: dict[str, Any] | None = None,
        handler: Job | None = None,
        **kwargs: Any,
    ) -> Event:
        """Register a triggered event, run only by :meth:`fire`.

        Options: ``match`` (payload predicate), ``thread``, ``overlap``,
        ``id`` (defaults to the trigger name, numbered when reused).
        """
        self._ensure_mutable("on")
        self._check_id(trigger_name, "trigger_name")
        opts = self._event_options(options, kwargs, ON_OPTIONS, "on")

        matcher = opts.get("match")
        if matcher is not None and not callable(matcher):
            raise ConfigurationError("'match' option must be callable").with_context(
                trigger=trigger_name
            )

        job_id = opts.get("id") or self._trigger_id(trigger_name)
        self._check_job(handler, job_id)
        mode, overlap = self._dispatch_options(opts, job_id, DispatchMode.BLOCKING)

        event = Event(
            job_id,
            EventKind.TRIGGERED,
            job=handler,
            dispatch_mode=mode,
            overlap_policy=overlap,
            trigger_name=trigger_name,
            matcher=matcher,
            guard=self._ensure_mutable,
        )
        self.registry.add_trigger(event)
        self.logger.info("trigger_registered", job_id=job_id, trigger=trigger_name)
        return event

    def _check_id(self, value: Any, label: str) -> None:
        if not isinstance(value, str) or not value:
            raise ConfigurationError(f"{label} must be a non-empty string, got {value!r}")

    def _check_job(self, job: Job | None, job_id: str) -> None:
        if job is not None and not callable(job):
            raise ConfigurationError(f"Job must be callable, got {job!r}").with_context(job_id=job_id)
        if job is None and self.default_job is None:
            raise ConfigurationError(
                f"Event {job_id!r} has no job and no default handler is set"
            ).with_context(job_id=job_id)

    def _event_options(
        self,
        options: dict[str, Any] | None,
        kwargs: dict[str, Any],
        allowed: frozenset[str],
        call: str,
    ) -> dict[str, Any]:
        merged = dict(options or {})
        for key, value in kwargs.items():
            merged[key.rstrip("_")] = value
        unknown = set(merged) - allowed
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s) for {call}(): {', '.join(sorted(unknown))}"
            )
        return merged

    def _dispatch_options(
        self, opts: dict[str, Any], job_id: str, default_mode: DispatchMode
    ) -> tuple[DispatchMode, OverlapPolicy]:
        thread = opts.get("thread")
        if thread is None:
            mode = default_mode
        elif isinstance(thread, bool):
            mode = DispatchMode.DETACHED if thread else DispatchMode.BLOCKING
        else:
            try:
                mode = DispatchMode(thread)
            except ValueError as exc:
                raise ConfigurationError(
                    f"thread must be a bool, 'blocking' or 'detached', got {thread!r}", cause=exc
                ).with_context(job_id=job_id) from exc

        try:
            overlap = OverlapPolicy(opts.get("overlap", OverlapPolicy.ALLOW))
        except ValueError as exc:
            raise ConfigurationError(
                f"overlap must be 'allow' or 'skip', got {opts.get('overlap')!r}", cause=exc
            ).with_context(job_id=job_id) from exc
        return mode, overlap

    def _event_tz(self, value: Any, job_id: str):
        try:
            return resolve_tz(value)
        except ValueError as exc:
            raise ConfigurationError(str(exc), cause=exc).with_context(job_id=job_id) from exc

    def _trigger_id(self, trigger_name: str) -> str:
        if trigger_name not in self.registry:
            return trigger_name
        n = 2
        while f"{trigger_name}#{n}" in self.registry:
            n += 1
        return f"{trigger_name}#{n}"

    # === Triggers ===

    def fire(self, trigger_name: str, payload: Any = None) -> int:
        """Dispatch every triggered event registered under ``trigger_name``.

        Allowed whether or not the loop is running. Periodic events are
        never touched.

        Returns:
            Number of events dispatched
        """
        now = self.clock.now()
        dispatched = 0
        for event in self.registry.triggered(trigger_name):
            if not event.matches_payload(payload):
                continue
            if self.dispatcher.dispatch(event, now, payload=payload):
                dispatched += 1

        if not dispatched:
            self.logger.debug("trigger_unmatched", trigger=trigger_name)
        return dispatched

    # === Tick loop ===

    def tick(self, now: datetime | None = None) -> list[Event]:
        """One evaluation pass: dispatch every periodic event due at ``now``.

        Returns:
            Events dispatched this tick, in registration order

        Raises:
            FatalDispatchError: A job failed with no error handler
            Exception: Whatever an error handler raised
        """
        self.dispatcher.raise_pending()
        now = now or self.clock.now()
        self.stats.record_tick(now)

        fired: list[Event] = []
        for event in self.registry.periodic():
            if not event.is_candidate(now, self.tz):
                continue
            if event.missed_boundaries:
                self.logger.warning(
                    "boundaries_dropped", job_id=event.job_id, missed=event.missed_boundaries,
                )
            if not self.dispatcher.check_predicate(event, now):
                self.logger.debug("event_skipped", job_id=event.job_id, reason="predicate")
                self.stats.record_skip()
                continue
            if self.dispatcher.dispatch(event, event.last_scheduled):
                fired.append(event)
        return fired

    def run(self) -> None:
        """Run the tick loop until :meth:`stop` or a fatal error.

        A :meth:`stop` issued before ``run()`` is honoured: the loop exits
        without ticking.

        Raises:
            RuntimeStateError: If already running
        """
        with self._state_lock:
            if self._state is ManagerState.RUNNING:
                raise RuntimeStateError("run() called while the manager is already running")
            self._state = ManagerState.RUNNING
        self.clock.clear_wake()

        tick_length = self.tick_length
        start = self.clock.now()
        boundary = 0
        self.logger.info(
            "tick_loop_started",
            events=len(self.registry),
            tick_length=tick_length.total_seconds(),
        )

        try:
            while not self._stop_requested.is_set():
                self.tick(self.clock.now())
                if self._stop_requested.is_set():
                    break

                boundary += 1
                now = self.clock.now()
                if start + boundary * tick_length <= now:
                    # Overran one or more boundaries; resume on the next future one
                    boundary = (now - start) // tick_length + 1
                self.clock.sleep_until(start + boundary * tick_length)
        except Exception:
            self.logger.exception("tick_loop_aborted")
            raise
        finally:
            with self._state_lock:
                self._state = ManagerState.STOPPED
                self._stop_requested.clear()
            self.logger.info("tick_loop_stopped", ticks=self.stats.tick_count)

    def stop(self) -> None:
        """Prevent further ticks. Detached jobs already running are left alone.

        Called before :meth:`run`, the request stays pending until that run
        (or :meth:`clear`) consumes it.
        """
        self._stop_requested.set()
        self.clock.wake()
        self.logger.info("tick_loop_stop_requested")

    def wait_for_detached(self, timeout: float | None = None) -> bool:
        """Block until detached jobs finish (best effort; returns False on timeout)."""
        return self.dispatcher.join(timeout)

    def clear(self) -> None:
        """Remove all events and default handlers; the manager returns to IDLE.

        Raises:
            RuntimeStateError: If the manager is running
        """
        with self._state_lock:
            if self._state is ManagerState.RUNNING:
                raise RuntimeStateError("clear() is not allowed while the manager is running")
            self.registry.clear()
            self.default_job = None
            self.default_error_handler = None
            self.stats = ManagerStats()
            self.dispatcher.reset()
            self._stop_requested.clear()
            self._state = ManagerState.IDLE
        self.logger.info("manager_cleared")

    # === Health ===

    def health(self) -> dict[str, Any]:
        """Loop status for probes and the CLI."""
        last_tick = self.stats.last_tick
        stale = False
        if self.is_running and last_tick is not None:
            stale = self.clock.now() - last_tick > 3 * self.tick_length
        return {
            "healthy": self.is_running and not stale,
            "state": self._state.value,
            "events": len(self.registry),
            "tick_length_seconds": self.tick_length.total_seconds(),
            "active_detached": self.dispatcher.active_workers,
            "stats": self.stats.to_dict(),
        }

    def __repr__(self) -> str:
        return f"Manager(state={self._state.value}, events={len(self.registry)})"


__all__ = [
    "Manager",
    "ManagerState",
    "ManagerStats",
    "DEFAULT_TICK_LENGTH",
    "EVERY_OPTIONS",
    "ON_OPTIONS",
]
