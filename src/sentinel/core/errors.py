"""
Exception types raised by the Sentinel engine.

A scheduler invocation can fail in three ways, and each is handled at a
different place:

- **Lookup and configuration** (unknown task type, bad handler class,
  unparseable cron expression): raised to the caller, never swallowed.
- **Handler failures**: caught by the runner, written to the task's
  ``storage`` and recorded as ``EXCEPTION``. The loop moves on.
- **Store failures** (database unreachable): end the invocation; the next
  cron or web-cron hit simply tries again.

Manifesto:
    Callers branch on the exception class, log with ``to_dict()`` and never
    parse messages. Every error knows its category and whether repeating
    the same call could succeed.

Architecture:
    ::

        SentinelError (category, retryable, context, cause)
        ├── ConfigError ─────────── MissingConfigError, InvalidConfigError
        ├── ValidationError ─────── QueuePayloadError
        ├── AuthError ───────────── AuthorizationError
        ├── OrchestrationError ──── InvalidTaskType, TaskRegistryError,
        │                           TaskNotFoundError
        └── DatabaseError ───────── DatabaseConnectionError (retryable)

Examples:
    >>> err = InvalidTaskType("no-such-task")
    >>> err.context.task_type
    'no-such-task'
    >>> err.category.value
    'ORCHESTRATION'

Tags:
    error-handling, exception-hierarchy, sentinel, scheduler

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse classification used in logs and CLI output."""

    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    ORCHESTRATION = "ORCHESTRATION"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """What the engine knew about the failing task or queue.

    Unknown keys passed to ``SentinelError.with_context`` land in
    ``extra`` and are flattened into ``to_dict()``.
    """

    task_id: int | None = None
    task_type: str | None = None
    site_id: int | None = None
    queue: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        data.update(self.extra)
        return data


class SentinelError(Exception):
    """Root of every error the engine raises on purpose.

    Subclasses pick a ``default_category`` and ``default_retryable``;
    both can be overridden per instance.

    Example:
        >>> SentinelError("boom").with_context(task_id=3).context.task_id
        3
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> SentinelError:
        """Attach context and return ``self`` so it can be raised inline."""
        known = {f.name for f in fields(self.context)} - {"extra"}
        for key, value in values.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.extra[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Flat, JSON-friendly form for structured logs."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


# -- Configuration -----------------------------------------------------------


class ConfigError(SentinelError):
    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """A required setting is empty."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """A setting or task field has a value the engine cannot use."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# -- Validation --------------------------------------------------------------


class ValidationError(SentinelError):
    default_category = ErrorCategory.VALIDATION


class QueuePayloadError(ValidationError):
    """Queue item payload is not a storable, non-recursive value."""


# -- Authorization -----------------------------------------------------------


class AuthError(SentinelError):
    default_category = ErrorCategory.AUTH


class AuthorizationError(AuthError):
    """Web-cron key missing, wrong, or the endpoint is disabled."""


# -- Task registry and lookup ------------------------------------------------


class OrchestrationError(SentinelError):
    default_category = ErrorCategory.ORCHESTRATION


class InvalidTaskType(OrchestrationError):
    """The task type is empty or has no registered handler."""

    def __init__(self, task_type: str | None = None):
        self.task_type = task_type or ""
        message = f"Unknown task type: {self.task_type!r}" if self.task_type else "Empty task type"
        super().__init__(message, context=ErrorContext(task_type=self.task_type or None))


class TaskRegistryError(OrchestrationError):
    """A handler could not be registered (bad name, bad class, failed import)."""


class TaskNotFoundError(OrchestrationError):
    """The task row does not exist (deleted between claim and completion)."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}", context=ErrorContext(task_id=task_id))


# -- Storage -----------------------------------------------------------------


class DatabaseError(SentinelError):
    default_category = ErrorCategory.DATABASE


class DatabaseConnectionError(DatabaseError):
    """The shared store could not be reached."""

    default_retryable = True


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SentinelError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "ValidationError",
    "QueuePayloadError",
    "AuthError",
    "AuthorizationError",
    "OrchestrationError",
    "InvalidTaskType",
    "TaskRegistryError",
    "TaskNotFoundError",
    "DatabaseError",
    "DatabaseConnectionError",
]
