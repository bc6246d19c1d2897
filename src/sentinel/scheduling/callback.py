"""Task handler contract.

A handler ("callback") is the code that runs for one task type. The
scheduler only needs three things from it: ``invoke(task, storage)``, its
``task_type()`` and a ``description()`` for reporting. Handler classes
declare their type with the :func:`as_task` decorator; the registry picks
decorated classes up from the handler packages and instantiates them with a
:class:`TaskContext`.

ARCHITECTURE
────────────
::

    @as_task("logrotate", "Rotate log files")
    class LogRotate(AbstractCallback):
        def invoke(self, task, storage):
            ...
            return Status.OK

    TaskRegistry(context).get("logrotate")  ─→ LogRotate(context)

``storage`` is the task's persistent scratch dict. Mutations are saved with
the outcome, so a handler returning ``Status.WILL_RESUME`` finds its
progress markers there on the next claim (``storage["task.resumed"]`` is
true in that case).

Tags:
    sentinel, scheduling, callback, handler, protocol

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from sentinel.core.dialect import Dialect, SQLiteDialect
from sentinel.core.logging import get_logger
from sentinel.core.protocols import Connection
from sentinel.core.settings import SentinelSettings, get_settings
from sentinel.queue.sql_queue import SqlQueue
from sentinel.scheduling.status import Status

if TYPE_CHECKING:
    from sentinel.scheduling.models import Task

#: Attribute set on classes decorated with :func:`as_task`.
TASK_META_ATTR = "__sentinel_task__"

C = TypeVar("C", bound=type)


@runtime_checkable
class TaskCallback(Protocol):
    """What the runner needs from a handler."""

    def invoke(self, task: Task, storage: dict[str, Any]) -> Status | int | None: ...

    def task_type(self) -> str: ...

    def description(self) -> str: ...


@dataclass
class TaskContext:
    """Dependencies handed to handler constructors.

    Attributes:
        conn: Shared database connection.
        dialect: SQL dialect of ``conn``.
        settings: Process settings.
    """

    conn: Connection
    dialect: Dialect = field(default_factory=SQLiteDialect)
    settings: SentinelSettings = field(default_factory=get_settings)

    def make_queue(self, identifier: str) -> SqlQueue:
        """Work queue bound to the shared connection."""
        return SqlQueue(identifier, self.conn, self.dialect)


def as_task(name: str, description: str = "") -> Callable[[C], C]:
    """Class decorator declaring the task type a handler serves.

    Example:
        >>> @as_task("mail.send", "Send queued mail")
        ... class SendMail(AbstractCallback):
        ...     def invoke(self, task, storage):
        ...         return Status.OK
    """

    def decorator(cls: C) -> C:
        setattr(cls, TASK_META_ATTR, (name.strip().lower(), description))
        return cls

    return decorator


def task_meta(obj: Any) -> tuple[str, str] | None:
    """``(type, description)`` declared with :func:`as_task`, if any.

    Only the class's own declaration counts; subclasses of a decorated
    handler are not registered under their parent's type.
    """
    cls = obj if isinstance(obj, type) else type(obj)
    return vars(cls).get(TASK_META_ATTR)


class AbstractCallback:
    """Base class for handlers built by the registry."""

    def __init__(self, context: TaskContext) -> None:
        self.context = context
        self.logger = get_logger(f"sentinel.tasks.{self.task_type()}")

    def invoke(self, task: Task, storage: dict[str, Any]) -> Status | int | None:
        raise NotImplementedError

    def task_type(self) -> str:
        meta = task_meta(self)
        return meta[0] if meta else type(self).__name__.lower()

    def description(self) -> str:
        meta = task_meta(self)
        return meta[1] if meta else ""

    def __call__(self, task: Task, storage: dict[str, Any]) -> Status | int | None:
        return self.invoke(task, storage)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} task_type={self.task_type()!r}>"


__all__ = [
    "TaskCallback",
    "TaskContext",
    "AbstractCallback",
    "as_task",
    "task_meta",
]
