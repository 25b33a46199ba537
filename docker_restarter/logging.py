"""docker-restarter — Structured logging configuration.

structlog renders every record, including records emitted through stdlib
``logging`` by the docker SDK.  Records carry:
    - timestamp (ISO-8601, UTC)
    - level and logger name
    - watch: the container whose pipeline emitted the record, when running
      inside a LogWatcher task
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

_LEVELS = ("debug", "info", "warning", "error", "critical")

# The docker SDK logs every HTTP request through urllib3.
_NOISY_LOGGERS = ("urllib3", "docker", "asyncio")

# Each LogWatcher task runs in its own context, so the value never leaks
# between pipelines.
_ctx_watch: ContextVar[str | None] = ContextVar("watch", default=None)


def bind_watch_context(watch: str | None) -> None:
    """Tag every record of the current task with the watched container."""
    _ctx_watch.set(watch)


def clear_watch_context() -> None:
    _ctx_watch.set(None)


def _add_watch(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    watch = _ctx_watch.get()
    if watch is not None:
        event_dict.setdefault("watch", watch)
    return event_dict


def _renderer(format: str) -> Any:
    if format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _handlers(formatter: logging.Formatter, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.  Call once, before watching starts.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` or ``"json"``.
        log_file: Also append records to this file.

    Raises:
        ValueError: unknown *level*.
    """
    if level.lower() not in _LEVELS:
        raise ValueError(f"unknown log level {level!r}")

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_watch,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(format),
        ],
    )

    root = logging.getLogger()
    root.handlers = _handlers(formatter, log_file)
    root.setLevel(level.upper())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger for *name*.

    Usage::

        log = get_logger(__name__)
        log.info("restart_succeeded", target="app", duration_ms=812.4)
    """
    return structlog.get_logger(name)
