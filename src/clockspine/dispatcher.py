"""
Dispatcher - invokes due jobs and routes their failures.

┌──────────────────────────────────────────────────────────────────────────────┐
│  DISPATCH FLOW                                                                │
│                                                                               │
│   dispatch(event, scheduled_at)                                               │
│      │                                                                        │
│      ├── BLOCKING ──────────────► _execute()   (loop waits)                  │
│      │                                                                        │
│      └── DETACHED                                                             │
│            ├── SKIP_IF_RUNNING and running  → skipped (logged, counted)      │
│            ├── worker cap reached           → skipped (logged, counted)      │
│            └── otherwise                    → worker thread → _execute()    │
│                                                                               │
│   _execute()                                                                  │
│      job(ctx) raises ──► RuntimeJobError ──► event.error_handler             │
│                                           └► manager.default_error_handler   │
│                                           └► none: FatalDispatchError        │
│      error handler raises ──► propagates (ends run())                        │
│                                                                               │
│  Fatal errors from worker threads are parked and re-raised by the loop       │
│  on its next tick.                                                            │
└──────────────────────────────────────────────────────────────────────────────┘

Trade-off:
    A BLOCKING job occupies the loop until it returns. A slow one delays
    every event due later in the same tick and can push the next tick past
    its boundary. The firing grid is unaffected; only wall-clock delivery
    is late.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError, FatalDispatchError, RuntimeJobError
from .event import DispatchMode, Event, JobContext, OverlapPolicy
from .logging import LogContext

if TYPE_CHECKING:
    from .manager import Manager


class Dispatcher:
    """Runs jobs for one :class:`~clockspine.manager.Manager`."""

    def __init__(self, manager: Manager) -> None:
        self._manager = manager
        self._lock = threading.Lock()
        self._workers: set[threading.Thread] = set()
        self._fatal: BaseException | None = None

    @property
    def active_workers(self) -> int:
        with self._lock:
            return len(self._workers)

    # === Dispatch ===

    def dispatch(
        self,
        event: Event,
        scheduled_at: datetime,
        payload: Any = None,
    ) -> bool:
        """Run ``event``'s job for the boundary ``scheduled_at``.

        Detached dispatch never blocks the caller: when every worker slot
        is taken the run is dropped rather than executed inline.

        Returns:
            False when the dispatch was skipped by the overlap policy or
            the worker cap

        Raises:
            ConfigurationError: If no job resolves for the event
            FatalDispatchError: If a blocking job failed with no error handler
        """
        job = event.job or self._manager.default_job
        if job is None:
            raise ConfigurationError(
                f"No job for event {event.job_id!r} and no default handler"
            ).with_context(job_id=event.job_id)

        ctx = JobContext(
            job_id=event.job_id,
            scheduled_at=scheduled_at,
            fired_at=self._manager.clock.now(),
            user_options=dict(event.user_options),
            payload=payload,
            trigger=event.trigger_name,
        )

        if event.dispatch_mode is DispatchMode.BLOCKING:
            self._execute(event, job, ctx)
            return True

        if event.overlap_policy is OverlapPolicy.SKIP_IF_RUNNING and not event.try_mark_running():
            self._manager.logger.info(
                "event_skipped", job_id=event.job_id, reason="still_running",
                scheduled_at=scheduled_at.isoformat(),
            )
            self._manager.stats.record_skip()
            return False

        cap = self._manager.max_concurrent_detached
        with self._lock:
            at_cap = cap is not None and len(self._workers) >= cap
            if not at_cap:
                worker = threading.Thread(
                    target=self._run_worker,
                    args=(event, job, ctx),
                    name=f"clockspine-{event.job_id}",
                    daemon=True,
                )
                self._workers.add(worker)

        if at_cap:
            self._finish(event)
            self._manager.logger.warning(
                "detached_cap_reached", job_id=event.job_id, max_concurrent_detached=cap,
                scheduled_at=scheduled_at.isoformat(),
            )
            self._manager.stats.record_skip()
            return False

        worker.start()
        return True

    def _run_worker(self, event: Event, job: Any, ctx: JobContext) -> None:
        try:
            self._execute(event, job, ctx)
        except Exception as exc:
            with self._lock:
                if self._fatal is None:
                    self._fatal = exc
            self._manager.logger.error(
                "detached_job_fatal", job_id=event.job_id, error=repr(exc),
            )
        finally:
            self._finish(event)
            with self._lock:
                self._workers.discard(threading.current_thread())

    def _finish(self, event: Event) -> None:
        if event.overlap_policy is OverlapPolicy.SKIP_IF_RUNNING:
            event.mark_finished()

    def _execute(self, event: Event, job: Any, ctx: JobContext) -> None:
        logger = self._manager.logger
        logger.info(
            "event_triggered", job_id=event.job_id,
            scheduled_at=ctx.scheduled_at.isoformat(), mode=event.dispatch_mode.value,
        )
        self._manager.stats.record_dispatch()
        try:
            with LogContext(job_id=event.job_id):
                job(ctx)
        except Exception as exc:
            self.route_failure(event, ctx, exc)

    def check_predicate(self, event: Event, now: datetime) -> bool:
        """Evaluate the event's ``if`` predicate; a raising predicate counts as a job failure."""
        try:
            return event.check_predicate(now, self._manager.tz)
        except Exception as exc:
            ctx = JobContext(
                job_id=event.job_id,
                scheduled_at=event.last_scheduled or now,
                fired_at=now,
                user_options=dict(event.user_options),
            )
            self.route_failure(event, ctx, exc)
            return False

    # === Failure routing ===

    def route_failure(self, event: Event, ctx: JobContext, exc: Exception) -> None:
        """Hand a job failure to the resolved error handler.

        Exceptions raised by the handler itself are not caught.
        """
        error = RuntimeJobError(event.job_id, exc).with_context(
            scheduled_at=ctx.scheduled_at.isoformat(),
            trigger=event.trigger_name,
        )
        self._manager.stats.record_failure(error)
        self._manager.logger.error("job_failed", **error.to_dict())

        handler = event.error_handler or self._manager.default_error_handler
        if handler is None:
            raise FatalDispatchError(
                f"Job {event.job_id!r} failed and no error handler is configured",
                cause=exc,
            ).with_context(job_id=event.job_id)

        ctx.error = error
        handler(ctx)

    # === Worker bookkeeping ===

    def raise_pending(self) -> None:
        """Re-raise a fatal error recorded by a worker thread, once."""
        with self._lock:
            fatal, self._fatal = self._fatal, None
        if fatal is not None:
            raise fatal

    def join(self, timeout: float | None = None) -> bool:
        """Wait for detached workers to finish.

        Returns:
            True if no worker is still alive
        """
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)
        return all(not worker.is_alive() for worker in workers)

    def reset(self) -> None:
        with self._lock:
            self._fatal = None


__all__ = ["Dispatcher"]
