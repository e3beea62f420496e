"""Tests for job dispatch and failure routing."""

import threading
import time
from datetime import timedelta

import pytest

from clockspine.clock import VirtualClock
from clockspine.errors import ConfigurationError, FatalDispatchError, RuntimeJobError
from clockspine.event import OverlapPolicy

T0 = VirtualClock.DEFAULT_START


class TestBlockingDispatch:
    def test_invokes_job_inline_with_context(self, manager):
        calls = []
        event = manager.every(60, "report", user_options={"to": "ops"}, job=calls.append)

        assert manager.dispatcher.dispatch(event, T0) is True

        (ctx,) = calls
        assert ctx.job_id == "report"
        assert ctx.scheduled_at == T0
        assert ctx.fired_at == T0
        assert ctx.user_options == {"to": "ops"}
        assert ctx.payload is None
        assert manager.stats.dispatched == 1

    def test_each_run_gets_its_own_user_options(self, manager):
        seen = []

        def job(ctx):
            seen.append(dict(ctx.user_options))
            ctx.user_options["attempt"] = len(seen)

        event = manager.every(60, "report", user_options={"to": "ops"}, job=job)
        manager.dispatcher.dispatch(event, T0)
        manager.dispatcher.dispatch(event, T0)

        assert seen == [{"to": "ops"}, {"to": "ops"}]
        assert event.user_options == {"to": "ops"}

    def test_falls_back_to_default_job(self, manager):
        calls = []
        manager.handler(calls.append)
        event = manager.every(60, "report")

        manager.dispatcher.dispatch(event, T0)

        assert [ctx.job_id for ctx in calls] == ["report"]

    def test_no_job_at_dispatch_time(self, manager):
        manager.handler(lambda ctx: None)
        event = manager.every(60, "report")
        manager.default_job = None

        with pytest.raises(ConfigurationError, match="No job"):
            manager.dispatcher.dispatch(event, T0)


class TestDetachedDispatch:
    def test_runs_on_worker_thread(self, manager):
        done = threading.Event()
        names = []

        def job(ctx):
            names.append(threading.current_thread().name)
            done.set()

        event = manager.every(60, "sync", thread=True, job=job)

        assert manager.dispatcher.dispatch(event, T0) is True
        assert done.wait(2)
        assert manager.wait_for_detached(2)
        assert names == ["clockspine-sync"]
        assert manager.dispatcher.active_workers == 0

    def test_skip_if_running(self, manager):
        release = threading.Event()
        calls = []

        def job(ctx):
            calls.append(ctx.scheduled_at)
            release.wait(5)

        event = manager.every(60, "sync", thread=True, overlap="skip", job=job)
        dispatcher = manager.dispatcher

        assert dispatcher.dispatch(event, T0) is True
        assert event.running
        assert dispatcher.dispatch(event, T0) is False
        assert manager.stats.skipped == 1

        release.set()
        assert manager.wait_for_detached(2)
        assert not event.running
        assert dispatcher.dispatch(event, T0) is True
        assert manager.wait_for_detached(2)
        assert len(calls) == 2

    def test_allow_overlap_runs_concurrently(self, manager):
        release = threading.Event()
        started = threading.Semaphore(0)

        def job(ctx):
            started.release()
            release.wait(5)

        event = manager.every(60, "sync", thread=True, job=job)
        assert event.overlap_policy is OverlapPolicy.ALLOW

        manager.dispatcher.dispatch(event, T0)
        manager.dispatcher.dispatch(event, T0)
        assert started.acquire(timeout=2)
        assert started.acquire(timeout=2)
        assert manager.dispatcher.active_workers == 2

        release.set()
        assert manager.wait_for_detached(2)

    def test_cap_reached_skips_without_blocking(self, manager):
        release = threading.Event()
        calls = []
        manager.configure(max_concurrent_detached=1)

        slow = manager.every(60, "slow", thread=True, job=lambda ctx: release.wait(5))
        other = manager.every(60, "other", thread=True, job=lambda ctx: (calls.append(ctx), time.sleep(1.5)))

        manager.dispatcher.dispatch(slow, T0)
        started = time.monotonic()
        assert manager.dispatcher.dispatch(other, T0) is False
        assert time.monotonic() - started < 1.0
        assert calls == []
        assert manager.stats.skipped == 1

        release.set()
        assert manager.wait_for_detached(2)

    def test_cap_reached_clears_running_flag(self, manager):
        release = threading.Event()
        manager.configure(max_concurrent_detached=1)
        slow = manager.every(60, "slow", thread=True, job=lambda ctx: release.wait(5))
        other = manager.every(60, "other", thread=True, overlap="skip", job=lambda ctx: None)

        manager.dispatcher.dispatch(slow, T0)
        assert manager.dispatcher.dispatch(other, T0) is False
        assert not other.running

        release.set()
        assert manager.wait_for_detached(2)
        # A free slot lets the next boundary through
        assert manager.dispatcher.dispatch(other, T0) is True
        assert manager.wait_for_detached(2)

    def test_tick_is_not_held_up_at_cap(self, manager):
        release = threading.Event()
        manager.configure(max_concurrent_detached=1)
        manager.every(60, "a", thread=True, job=lambda ctx: release.wait(5))
        manager.every(60, "b", thread=True, job=lambda ctx: time.sleep(1.5))

        started = time.monotonic()
        fired = manager.tick(T0 + timedelta(seconds=60))

        assert time.monotonic() - started < 1.0
        assert [event.job_id for event in fired] == ["a"]
        release.set()
        assert manager.wait_for_detached(2)


class TestFailureRouting:
    def test_event_handler_receives_error(self, manager):
        handled = []
        boom = ValueError("boom")

        def job(ctx):
            raise boom

        event = manager.every(60, "report", job=job).on_error(handled.append)
        manager.dispatcher.dispatch(event, T0)

        (ctx,) = handled
        assert isinstance(ctx.error, RuntimeJobError)
        assert ctx.error.job_id == "report"
        assert ctx.exception is boom
        assert ctx.error.context.scheduled_at == T0.isoformat()
        assert manager.stats.failed == 1

    def test_event_handler_wins_over_default(self, manager):
        seen = []
        manager.error_handler(lambda ctx: seen.append("default"))
        event = manager.every(60, "report", job=lambda ctx: 1 / 0)
        event.on_error(lambda ctx: seen.append("event"))

        manager.dispatcher.dispatch(event, T0)

        assert seen == ["event"]

    def test_default_handler(self, manager):
        seen = []
        manager.error_handler(lambda ctx: seen.append(type(ctx.exception)))
        event = manager.every(60, "report", job=lambda ctx: 1 / 0)

        manager.dispatcher.dispatch(event, T0)

        assert seen == [ZeroDivisionError]

    def test_no_handler_is_fatal(self, manager):
        event = manager.every(60, "report", job=lambda ctx: 1 / 0)

        with pytest.raises(FatalDispatchError) as exc_info:
            manager.dispatcher.dispatch(event, T0)
        assert isinstance(exc_info.value.cause, ZeroDivisionError)
        assert exc_info.value.context.job_id == "report"

    def test_handler_failure_propagates(self, manager):
        def handler(ctx):
            raise KeyError("handler bug")

        manager.error_handler(handler)
        event = manager.every(60, "report", job=lambda ctx: 1 / 0)

        with pytest.raises(KeyError):
            manager.dispatcher.dispatch(event, T0)

    def test_detached_fatal_raised_on_next_tick(self, manager):
        event = manager.every(60, "sync", thread=True, job=lambda ctx: 1 / 0)

        manager.dispatcher.dispatch(event, T0)
        assert manager.wait_for_detached(2)

        with pytest.raises(FatalDispatchError):
            manager.tick()
        # Raised once, then cleared
        manager.tick()

    def test_raising_predicate_is_routed(self, manager):
        handled = []
        manager.error_handler(handled.append)

        def predicate(now):
            raise RuntimeError("bad predicate")

        event = manager.every(60, "report", if_=predicate, job=lambda ctx: None)

        assert manager.dispatcher.check_predicate(event, T0) is False
        assert isinstance(handled[0].exception, RuntimeError)
