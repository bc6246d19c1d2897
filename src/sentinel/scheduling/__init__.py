"""Scheduling package for Sentinel.

Manifesto:
    Shared-hosting cron gives no daemon and no guarantee that two
    invocations never overlap.  Scheduling therefore lives in the task
    table: each invocation claims due rows one at a time under a row lock,
    runs their handlers inside an exception boundary and releases them
    with the outcome, all within a wall-clock budget.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SENTINEL SCHEDULING                                                          │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from sentinel.scheduling import create_runner                      │   │
│  │                                                                      │   │
│  │   runner = create_runner()          # settings from SENTINEL_* env   │   │
│  │   summary = runner.run(source="cli")                                 │   │
│  │   print(summary.to_text())                                           │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Architecture:                                                                │
│  ┌─────────────────────────────────────────────────────────────────────┐    │
│  │   cron / web-cron ──► TaskRunner ──► TaskRepository (claim/complete)│    │
│  │                           │                                         │    │
│  │                           ├──► TaskRegistry ──► handler.invoke()    │    │
│  │                           └──► ExecutionTimer (budget)              │    │
│  └─────────────────────────────────────────────────────────────────────┘    │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Constructing runner components individually in entry points
    ✅ ``create_runner(settings)`` factory function

Tags:
    sentinel, scheduling, cron, row-locking, time-budget

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from sentinel.core.connection import open_connection
from sentinel.core.dialect import Dialect
from sentinel.core.migrations import MigrationRunner
from sentinel.core.protocols import Connection
from sentinel.core.settings import SentinelSettings, get_settings
from sentinel.scheduling.callback import AbstractCallback, TaskCallback, TaskContext, as_task
from sentinel.scheduling.models import Task, TaskCreate, TaskUpdate
from sentinel.scheduling.registry import TaskRegistry
from sentinel.scheduling.repository import RunnerHeartbeat, TaskRepository, validate_cron
from sentinel.scheduling.runner import RunSummary, TaskRunner
from sentinel.scheduling.status import RunOnce, Status
from sentinel.scheduling.timer import ExecutionTimer

__all__ = [
    # Status
    "Status",
    "RunOnce",
    # Models
    "Task",
    "TaskCreate",
    "TaskUpdate",
    # Handlers
    "TaskCallback",
    "TaskContext",
    "AbstractCallback",
    "as_task",
    "TaskRegistry",
    # Repository
    "TaskRepository",
    "RunnerHeartbeat",
    "validate_cron",
    # Runner
    "TaskRunner",
    "RunSummary",
    "ExecutionTimer",
    "create_runner",
]


def create_runner(
    settings: SentinelSettings | None = None,
    *,
    conn: Connection | None = None,
    dialect: Dialect | None = None,
    timer: ExecutionTimer | None = None,
    migrate: bool = False,
) -> TaskRunner:
    """Factory function to create a fully wired task runner.

    Args:
        settings: Process settings (default: ``get_settings()``)
        conn: Existing connection; opened from ``settings.database_url`` when omitted
        dialect: Dialect of ``conn`` (required together with ``conn``)
        timer: Execution budget (default: from settings)
        migrate: Apply pending schema migrations first

    Returns:
        Configured TaskRunner; its repository and registry are reachable
        as ``runner.repository`` / ``runner.registry``.

    Example:
        >>> runner = create_runner()
        >>> runner.run()
    """
    settings = settings or get_settings()
    if conn is None:
        conn, dialect = open_connection(settings.database_url)
    if dialect is None:
        raise ValueError("dialect is required when passing a connection")

    if migrate:
        MigrationRunner(conn, dialect).apply_pending()

    context = TaskContext(conn=conn, dialect=dialect, settings=settings)
    repository = TaskRepository(conn, dialect, stuck_threshold=settings.cron_stuck_threshold)
    registry = TaskRegistry(context)

    return TaskRunner(
        repository=repository,
        registry=registry,
        timer=timer or ExecutionTimer(settings.max_execution, settings.execution_bias),
        settings=settings,
    )
