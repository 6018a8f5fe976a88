"""
Structured logging for steadfast.

All modules log through :func:`get_logger` with dotted event names and
key/value fields, e.g.::

    logger.warning("breaker.opened", key="kie:video", failures=3, cooldown=60.0)

Exceptions may be passed as ``error=exc``; the chain flattens them into
``error``, ``error_type`` and, for taxonomy errors, ``error_category``,
``retryable`` and the error's context fields.

Configuration Flow:
    ::

        configure_logging(SteadfastSettings())      # STEADFAST_LOG_LEVEL, ...
            │
            ▼
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars      (job_id, dependency bound via LogContext)
          3. add_log_level / add_logger_name
          4. service.name
          5. error flattening
          6. JSONRenderer with ECS names (or ConsoleRenderer)

Examples:
    >>> from steadfast.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="ad-jobs")
    >>> logger = get_logger(__name__)
    >>> with LogContext(job_id="job-1"):
    ...     logger.info("job.started")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from steadfast.core.errors import SteadfastError, one_line

if TYPE_CHECKING:
    from steadfast.core.settings import SteadfastSettings

_ECS_FIELDS = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
}


class ServiceName:
    """Processor stamping ``service.name`` unless the event already carries one."""

    def __init__(self, name: str):
        self.name = name

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.name)
        return event_dict


def flatten_error(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render an ``error=`` exception as one-line text plus its handling flags."""
    error = event_dict.get("error")
    if not isinstance(error, BaseException):
        return event_dict

    event_dict["error"] = one_line(error)
    event_dict.setdefault("error_type", type(error).__name__)
    if isinstance(error, SteadfastError):
        event_dict.setdefault("error_category", error.category.value)
        event_dict.setdefault("retryable", error.retryable)
        for key, value in error.context.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


def ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename core fields to their Elastic Common Schema names."""
    for plain, ecs in _ECS_FIELDS.items():
        if plain in event_dict:
            event_dict[ecs] = event_dict.pop(plain)
    return event_dict


def configure_logging(
    settings: SteadfastSettings | None = None,
    *,
    level: str | None = None,
    json_format: bool | None = None,
    service: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Values come from ``settings`` (``STEADFAST_LOG_LEVEL``,
    ``STEADFAST_LOG_JSON``, ``STEADFAST_SERVICE_NAME``); keyword arguments win.
    ``json_format=None`` picks JSON when stdout is not a tty.
    """
    if settings is None:
        from steadfast.core.settings import SteadfastSettings

        settings = SteadfastSettings()

    level = (level or settings.log_level).upper()
    service = service or settings.service_name
    if json_format is None:
        json_format = settings.log_json
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        ServiceName(service),
        flatten_error,
    ]
    if json_format:
        processors += [
            ecs_field_names,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        force=True,
        level=getattr(logging, level),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a block, restoring outer values on exit.

    Nested contexts may rebind the same key (a scene inside a job inside a
    batch); leaving the inner block puts the outer value back.

    Example:
        async with LogContext(job_id="abc123", dependency="kie:video"):
            logger.info("scene.started")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self.fields))
        return self

    def __exit__(self, *exc: object) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc: object) -> None:
        self.__exit__(*exc)


__all__ = [
    "configure_logging",
    "get_logger",
    "clear_context",
    "LogContext",
    "ServiceName",
    "flatten_error",
    "ecs_field_names",
]
