"""
Structured error types for the clockspine scheduling engine.

Every failure the engine raises carries a category, an optional chained
cause, and a small context record so that the host can log it as a single
structured event.

Manifesto:
    - **Fail at the call that caused it:** configuration mistakes surface
      from ``every``/``on``/``configure``, never later at tick time
    - **Isolate jobs, not handlers:** a job failure is recovered and routed;
      a failure while handling a failure is fatal
    - **Never swallow:** an error with no handler ends ``run()``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                    ClockspineError                        │
        │           (category, context, cause, to_dict)             │
        ├──────────────────────────────────────────────────────────┤
        │                                                           │
        │  ConfigurationError        RuntimeJobError                │
        │  (CONFIG)                  (JOB, job_id, cause)           │
        │       │                                                   │
        │  RuntimeStateError         FatalDispatchError             │
        │  (STATE)                   (INTERNAL, unroutable)         │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> err = ConfigurationError("period must be positive").with_context(job_id="backup")
    >>> err.to_dict()["context"]
    {'job_id': 'backup'}

Tags:
    error-handling, exception-hierarchy, scheduling, clockspine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification used for logging and routing of engine errors."""

    CONFIG = "CONFIG"  # Invalid period, unparseable at-constraint, missing job
    STATE = "STATE"  # Invalid lifecycle transition
    JOB = "JOB"  # Failure raised inside a job body
    INTERNAL = "INTERNAL"  # Unroutable failure, engine bug


CONTEXT_FIELDS = ("job_id", "trigger", "scheduled_at")


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        job_id: Identifier of the event whose job or registration failed
        trigger: Trigger name for triggered events
        scheduled_at: Tick boundary the job was dispatched for
        metadata: Additional key-value pairs
    """

    job_id: str | None = None
    trigger: str | None = None
    scheduled_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields plus metadata, flattened for a log line."""
        fields = {name: getattr(self, name) for name in CONTEXT_FIELDS}
        return {**{k: v for k, v in fields.items() if v is not None}, **self.metadata}


class ClockspineError(Exception):
    """
    Base exception for all clockspine errors.

    Subclasses set ``default_category``; instances may override it. A
    ``cause`` is chained onto ``__cause__`` so tracebacks show the original
    failure.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ClockspineError:
        """Attach context fields and return the same error.

        Unknown keys land in ``context.metadata``::

            raise ConfigurationError("bad at").with_context(job_id="report", constraint="25:00")
        """
        for key, value in kwargs.items():
            if key in CONTEXT_FIELDS:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, used as the fields of a ``job_failed`` log line."""
        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if context := self.context.to_dict():
            payload["context"] = context
        if self.cause is not None:
            payload["cause"] = repr(self.cause)
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(ClockspineError):
    """
    Invalid schedule configuration.

    Raised synchronously by the call that caused it: a non-positive period,
    an unparseable ``at`` constraint, an event with no job and no default handler,
    or an attempt to mutate the schedule while the manager is running.
    """

    default_category = ErrorCategory.CONFIG


class RuntimeStateError(ConfigurationError):
    """Invalid lifecycle transition (``run()`` twice, ``configure`` while running)."""

    default_category = ErrorCategory.STATE


# =============================================================================
# DISPATCH ERRORS
# =============================================================================


class RuntimeJobError(ClockspineError):
    """A failure raised inside a job body.

    The original exception is available as ``cause`` (and ``__cause__``).
    Error handlers receive this error through ``JobContext.error``.
    """

    default_category = ErrorCategory.JOB

    def __init__(self, job_id: str, cause: BaseException, **kwargs: Any):
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} failed: {cause!r}", cause=cause, **kwargs)
        self.context.job_id = job_id


class FatalDispatchError(ClockspineError):
    """A job failure that could not be routed to any error handler."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ClockspineError",
    "ConfigurationError",
    "RuntimeStateError",
    "RuntimeJobError",
    "FatalDispatchError",
]
