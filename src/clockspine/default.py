"""Process-wide default manager for clock files.

Clock files loaded by ``clockspine run`` register their events here::

    # clock.py
    from clockspine import default as clock
    from clockspine import minutes

    clock.error_handler(lambda ctx: alert(ctx.exception))
    clock.every(minutes(5), "feeds.refresh", job=refresh_feeds)

The manager is created lazily on first use. :func:`clear` is the only
reset; the instance itself is never swapped out behind the caller's back.
Each function forwards to the :class:`~clockspine.manager.Manager` method
of the same name.
"""

from __future__ import annotations

import threading
from typing import Any

from .event import ErrorHandler, Event, Job
from .manager import Manager

_manager: Manager | None = None
_manager_lock = threading.Lock()


def get_manager() -> Manager:
    """Return the default manager, creating it on first call."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = Manager()
        return _manager


def configure(options: dict[str, Any] | None = None, **kwargs: Any) -> Manager:
    return get_manager().configure(options, **kwargs)


def handler(job: Job) -> Job:
    return get_manager().handler(job)


def error_handler(handler: ErrorHandler) -> ErrorHandler:
    return get_manager().error_handler(handler)


def every(period, job_id: str, options=None, user_options=None, job: Job | None = None, **kwargs: Any) -> Event:
    return get_manager().every(period, job_id, options, user_options, job, **kwargs)


def on(trigger_name: str, options=None, handler: Job | None = None, **kwargs: Any) -> Event:
    return get_manager().on(trigger_name, options, handler, **kwargs)


def fire(trigger_name: str, payload: Any = None) -> int:
    return get_manager().fire(trigger_name, payload)


def run() -> None:
    get_manager().run()


def stop() -> None:
    get_manager().stop()


def clear() -> None:
    get_manager().clear()


__all__ = [
    "get_manager",
    "configure",
    "handler",
    "error_handler",
    "every",
    "on",
    "fire",
    "run",
    "stop",
    "clear",
]
