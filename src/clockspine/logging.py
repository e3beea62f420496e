"""
Structured logging for clockspine.

The engine logs event-style messages (``event_triggered``, ``job_failed``,
``boundaries_dropped``, ...) with key/value fields through structlog. Host
applications call :func:`configure_logging` once at startup; the CLI does it
for them. Without that call structlog's defaults apply and the engine still
logs, just unformatted.

Processor chain::

    TimeStamper(iso)            (optional)
    merge_contextvars           <- LogContext(job_id=...) around each job
    add_log_level, add_logger_name, StackInfoRenderer, set_exc_info
    service field               {"service.name": <service>}
    ── json ──────────────────  format_exc_info, ECS field names, JSONRenderer
    ── console ───────────────  ConsoleRenderer

Example:
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> get_logger(__name__).info("event_triggered", job_id="heartbeat")
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# structlog key -> ECS key
ECS_FIELDS = {"timestamp": "@timestamp", "level": "log.level", "logger": "log.logger"}


def _service_field(service: str) -> Processor:
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", service)
        return event_dict

    return add_service


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename structlog's standard keys to their ECS equivalents."""
    for key, ecs_key in ECS_FIELDS.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def _processor_chain(json_format: bool, service: str, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso"))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _service_field(service),
    ]
    if json_format:
        chain += [
            structlog.processors.format_exc_info,
            _ecs_field_names,
            structlog.processors.JSONRenderer(),
        ]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    service: str = "clockspine",
    add_timestamp: bool = True,
) -> None:
    """Route structlog through the stdlib ``logging`` module.

    Args:
        level: Level name or number
        json_format: JSON lines when True, console when False, JSON when
            stdout is not a terminal when None
        service: Value of the ``service.name`` field
        add_timestamp: Prefix events with an ISO timestamp
    """
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level!r}")
    if json_format is None:
        json_format = not sys.stdout.isatty()

    structlog.configure(
        processors=_processor_chain(json_format, service, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def as_structured(logger: Any) -> Any:
    """Accept a stdlib ``logging.Logger`` where a structlog logger is expected."""
    if isinstance(logger, logging.Logger):
        return structlog.wrap_logger(logger)
    return logger


class LogContext:
    """Bind fields to every log line emitted inside the block.

    Nested blocks restore the outer values on exit.

    Example:
        with LogContext(job_id="heartbeat"):
            logger.info("job_started")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "configure_logging",
    "get_logger",
    "as_structured",
    "LogContext",
]
