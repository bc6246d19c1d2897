"""
Structured logging for scheduler invocations.

An invocation lives for a minute at most, so apart from the task rows the
log is the only trace of what a tick did. structlog renders each event and
hands the line to a stdlib logger; the root logger then writes it to stderr
and, when a log file is configured, appends it under ``log_dir`` where the
``logrotate`` task keeps it in check. The runner binds ``task_id``,
``task_type`` and ``site_id`` around each task so every line a handler
emits carries them.

Architecture:
    ::

        configure_logging(level, json_format, service, log_file)
            structlog:  level filter → timestamp → contextvars
                        → level/logger name → service → JSON | console
            stdlib root handlers:
                        stderr (looked up per record)
                        log_file (append, optional)

        with LogContext(task_id=7, task_type="logrotate"):
            logger.info("task.finished", status="OK")

Tags:
    logging, structlog, contextvars, sentinel

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "sentinel"


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


class _StderrHandler(logging.StreamHandler):
    """Stream handler bound to whatever ``sys.stderr`` is when a record is emitted.

    CLI runners and pytest capture swap ``sys.stderr`` per invocation.
    """

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, value: Any) -> None:
        pass


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "sentinel",
    add_timestamp: bool = True,
    log_file: str | Path | None = None,
) -> None:
    """Set up structlog and the stdlib root logger for this process.

    Args:
        level: Minimum level name, e.g. ``"WARNING"``.
        json_format: ``None`` picks JSON unless stderr is a terminal.
        service: Value of the ``service`` field on every event.
        add_timestamp: Prefix events with a UTC ISO timestamp.
        log_file: Also append every line to this file (parent created).
    """
    global _service
    _service = service
    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        threshold = logging.INFO
    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [structlog.stdlib.filter_by_level]
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.dev.set_exc_info,
        _add_service,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # No colour codes once the same line also lands in a file.
        colors = sys.stderr.isatty() and log_file is None
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # stdout is reserved for command output (``--json``).
    handlers: list[logging.Handler] = [_StderrHandler()]
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8", delay=True))
    logging.basicConfig(format="%(message)s", level=threshold, handlers=handlers, force=True)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**values: Any) -> None:
    """Attach ``values`` to every later event of the current thread."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind values for the duration of a ``with`` block.

    Keys bound outside the block are restored on exit, so nesting works.
    """

    def __init__(self, **values: Any):
        self._values = values
        self._scope: Any = None

    def __enter__(self) -> LogContext:
        self._scope = structlog.contextvars.bound_contextvars(**self._values)
        self._scope.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._scope.__exit__(*exc_info)
        self._scope = None


__all__ = ["configure_logging", "get_logger", "bind_context", "clear_context", "LogContext"]
