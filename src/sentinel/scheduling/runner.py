"""Task runner - claims due tasks and executes them within a time budget.

Manifesto:
    There is no daemon.  Every cron hit or web-cron request builds a
    runner, which keeps claiming and executing due tasks until the
    invocation's time budget is spent or nothing is due.  A handler that
    fails never takes the loop down with it: its error is recorded on the
    task and the next task runs.

Tags:
    sentinel, scheduling, runner, time-budget, exception-boundary

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  TaskRunner.run()                                                             │
│                                                                               │
│   while timer.time_left() > 0.01:                                             │
│     run_next_task()                                                           │
│       ├── repository.find_next_due_task()      claim (or stop: nothing due)  │
│       ├── registry.get(task.type)              unknown → NO_ROUTINE          │
│       ├── handler.invoke(task, storage)        raises  → EXCEPTION           │
│       │                                        returns → Status.coerce()     │
│       │                                        SIGTERM → TIMEOUT, then exit  │
│       └── repository.complete_task(...)        always                        │
│                                                 fails  → NO_RELEASE (best     │
│                                                          effort)             │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import signal
import threading
import traceback
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sentinel.core.errors import InvalidTaskType, TaskNotFoundError
from sentinel.core.logging import LogContext, get_logger
from sentinel.core.settings import SentinelSettings, get_settings
from sentinel.core.timestamps import utc_now
from sentinel.scheduling.models import Task
from sentinel.scheduling.registry import TaskRegistry
from sentinel.scheduling.repository import TaskRepository
from sentinel.scheduling.status import Status
from sentinel.scheduling.timer import ExecutionTimer

logger = get_logger(__name__)

#: The runner stops claiming when less than this many seconds are left.
MIN_TIME_LEFT = 0.01

RESUMED_KEY = "task.resumed"


class _Terminated(BaseException):
    """Raised inside a handler when the host sends SIGTERM.

    Not an ``Exception`` or ``SystemExit``, so the handler boundary lets it
    through to the runner.
    """

    def __init__(self, signum: int) -> None:
        super().__init__(signum)
        self.signum = signum


@dataclass
class RunSummary:
    """What one ``TaskRunner.run()`` did."""

    started_at: datetime = field(default_factory=utc_now)
    executed: int = 0
    outcomes: Counter = field(default_factory=Counter)
    elapsed: float = 0.0

    def record(self, status: Status) -> None:
        self.executed += 1
        self.outcomes[status.name] += 1

    @property
    def failed(self) -> int:
        return sum(count for name, count in self.outcomes.items() if Status[name].is_failure)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "executed": self.executed,
            "failed": self.failed,
            "outcomes": dict(self.outcomes),
            "elapsed": round(self.elapsed, 3),
        }

    def to_text(self) -> str:
        """Plain-text report (web-cron response body, CLI output)."""
        lines = [f"Executed {self.executed} task(s) in {self.elapsed:.2f}s"]
        for name, count in sorted(self.outcomes.items()):
            lines.append(f"  {Status[name].for_humans()}: {count}")
        return "\n".join(lines)


class TaskRunner:
    """Runs due tasks until the time budget is spent.

    Example:
        >>> runner = TaskRunner(repository, registry)
        >>> summary = runner.run()
        >>> print(summary.to_text())
    """

    def __init__(
        self,
        repository: TaskRepository,
        registry: TaskRegistry,
        timer: ExecutionTimer | None = None,
        settings: SentinelSettings | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.settings = settings or get_settings()
        self.timer = timer or ExecutionTimer(self.settings.max_execution, self.settings.execution_bias)
        self.last_outcome: Status | None = None
        self._prepared = False

    def _prepare(self) -> None:
        # Discover handlers before claiming anything: a broken handler package
        # must fail the invocation, not leave a claimed task locked.
        if not self._prepared:
            self.registry.list_types()
            self._prepared = True

    # -- Public API --------------------------------------------------------

    def run(self, source: str = "cli") -> RunSummary:
        """Claim and execute due tasks while the budget lasts."""
        self._prepare()
        summary = RunSummary()
        self.repository.record_runner_heartbeat(source)
        logger.info("runner.started", source=source, budget=self.timer.budget)

        while self.timer.time_left() > MIN_TIME_LEFT:
            if not self.run_next_task():
                break
            if self.last_outcome is not None:
                summary.record(self.last_outcome)

        summary.elapsed = self.timer.elapsed()
        logger.info("runner.finished", **summary.to_dict())
        return summary

    def run_next_task(self) -> bool:
        """Claim and execute one task. Returns False when nothing was due."""
        self._prepare()
        self.last_outcome = None
        task = self.repository.find_next_due_task()
        if task is None:
            logger.debug("runner.nothing_due")
            return False

        with LogContext(task_id=task.id, task_type=task.type, site_id=task.site_id):
            try:
                with self._timeout_trap():
                    status, storage = self._execute(task)
            except _Terminated as e:
                self._record_timeout(task)
                raise SystemExit(128 + e.signum) from None
            self.last_outcome = status
            try:
                self.repository.complete_task(task, status, storage)
            except TaskNotFoundError:
                logger.error("task.vanished", status=Status.NO_TASK.name)
                self.last_outcome = Status.NO_TASK
            except Exception as e:
                logger.error("task.complete_failed", error=str(e), exc_info=True)
                self.last_outcome = Status.NO_RELEASE
                self._mark_no_release(task)
        return True

    def run_callback(self, task_type: str, params: dict[str, Any] | None = None) -> Status:
        """Run one handler directly, outside the cron loop and without a task row.

        Raises:
            InvalidTaskType: Nothing handles ``task_type``.
        """
        self.registry.get(task_type)
        task = Task(type=task_type, params=dict(params or {}), last_exit_code=Status.RUNNING)
        with LogContext(task_type=task_type):
            status, _ = self._execute(task)
        return status

    def close(self) -> None:
        """Close the database connection the runner works on."""
        close = getattr(self.repository.conn, "close", None)
        if close is not None:
            close()

    # -- Internals ---------------------------------------------------------

    def _execute(self, task: Task) -> tuple[Status, dict[str, Any]]:
        try:
            handler = self.registry.get(task.type)
        except InvalidTaskType:
            logger.error("task.unknown_type", status=Status.NO_ROUTINE.name)
            return Status.NO_ROUTINE, {}

        storage = dict(task.storage)
        storage[RESUMED_KEY] = task.resuming
        logger.debug("task.resuming" if task.resuming else "task.executing")

        try:
            result = handler.invoke(task, storage)
        except (Exception, SystemExit) as e:
            logger.error("task.exception", error=str(e), error_type=type(e).__name__, exc_info=True)
            return Status.EXCEPTION, {
                "error": str(e) or type(e).__name__,
                "trace": traceback.format_exc(),
            }

        status = Status.coerce(result)
        storage.pop(RESUMED_KEY, None)

        if status is Status.NO_EXIT:
            logger.warning("task.no_exit_status")
        elif status is Status.INVALID_EXIT:
            logger.warning("task.invalid_exit_status", returned=repr(result))
        else:
            logger.info("task.finished", status=status.name)

        if status.is_terminal:
            # Continuation state only survives WILL_RESUME.
            storage = {}
        return status, storage

    @contextmanager
    def _timeout_trap(self) -> Iterator[None]:
        """Turn SIGTERM into ``_Terminated`` while a claimed task runs.

        Signal handlers can only be set from the main thread; elsewhere
        the trap is a no-op.
        """
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def _on_sigterm(signum: int, frame: Any) -> None:
            raise _Terminated(signum)

        previous = signal.signal(signal.SIGTERM, _on_sigterm)
        try:
            yield
        finally:
            # None: a handler installed outside Python.
            signal.signal(signal.SIGTERM, signal.SIG_DFL if previous is None else previous)

    def _record_timeout(self, task: Task) -> None:
        self.last_outcome = Status.TIMEOUT
        logger.error("task.terminated", status=Status.TIMEOUT.name)
        try:
            self.repository.complete_task(task, Status.TIMEOUT, {})
        except Exception as e:  # noqa: BLE001
            logger.error("task.timeout_not_recorded", error=str(e))

    def _mark_no_release(self, task: Task) -> None:
        try:
            self.repository.mark_no_release(task)
        except Exception as e:  # noqa: BLE001
            logger.error("task.no_release_failed", error=str(e))


__all__ = ["TaskRunner", "RunSummary", "MIN_TIME_LEFT", "RESUMED_KEY"]
