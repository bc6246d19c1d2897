"""Task repository - CRUD, claiming, completion and cron evaluation.

Manifesto:
    The task table is the only coordination point between scheduler
    invocations.  Every state transition a runner makes (claim, complete)
    is one short transaction here, so two processes racing for the same
    row can never both run it.

Tags:
    sentinel, scheduling, repository, CRUD, cron, croniter, row-locking

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  TASK REPOSITORY                                                              │
│                                                                               │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                        TaskRepository                              │      │
│  │                                                                    │      │
│  │   CRUD Operations:                                                 │      │
│  │   ├── create(data) → Task                                          │      │
│  │   ├── get(id) → Task | None                                        │      │
│  │   ├── list_all(site_id, enabled) → list[Task]                      │      │
│  │   ├── update(id, updates) → Task | None                            │      │
│  │   ├── delete(id) → bool                                            │      │
│  │   └── count() → int                                                │      │
│  │                                                                    │      │
│  │   Engine Operations:                                               │      │
│  │   ├── find_next_due_task() → Task | None     (claim, one txn)      │      │
│  │   ├── complete_task(task, status, storage)   (release, one txn)    │      │
│  │   ├── is_stuck(task) → bool                  (read-only)           │      │
│  │   ├── list_stuck() → list[Task]              (read-only)           │      │
│  │   └── release_stuck() → int                  (operator only)       │      │
│  │                                                                    │      │
│  │   Cron:                                                            │      │
│  │   └── compute_next_execution(expr, after) → datetime               │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│                                                                               │
│  Claim:                                                                       │
│    BEGIN                                                                      │
│      SELECT first enabled, unlocked row that is WILL_RESUME or due            │
│        ORDER BY priority, next_execution, id  [FOR UPDATE SKIP LOCKED]        │
│      UPDATE ... SET locked = now, last_exit_code = RUNNING                    │
│        WHERE id = ? AND locked IS NULL        (must hit exactly one row)      │
│    COMMIT                                                                     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from croniter import croniter

from sentinel.core.connection import transaction
from sentinel.core.dialect import Dialect, SQLiteDialect
from sentinel.core.errors import InvalidConfigError, TaskNotFoundError
from sentinel.core.logging import get_logger
from sentinel.core.protocols import Connection
from sentinel.core.settings import MIN_STUCK_THRESHOLD
from sentinel.core.timestamps import ensure_utc, from_db, to_db, utc_now
from sentinel.scheduling.models import Task, TaskCreate, TaskUpdate
from sentinel.scheduling.status import RunOnce, Status

logger = get_logger(__name__)

#: Claims give up after losing this many races in a row.
MAX_CLAIM_ATTEMPTS = 10

HEARTBEAT_KEY = "runner.last_execution"

#: Outcomes that disable a RunOnce.DELETE task instead of deleting it, so the
#: error stays inspectable.
KEEP_AFTER_FAILURE = frozenset({Status.EXCEPTION, Status.NO_ROUTINE})

_TASK_COLUMNS = [
    "id",
    "site_id",
    "type",
    "cron_expression",
    "enabled",
    "priority",
    "params",
    "storage",
    "locked",
    "last_exit_code",
    "last_execution",
    "last_run_end",
    "next_execution",
    "times_executed",
    "times_failed",
    "run_once",
    "created_at",
    "updated_at",
]
_SELECT_TASK = f"SELECT {', '.join(_TASK_COLUMNS)} FROM sentinel_tasks"


@dataclass
class RunnerHeartbeat:
    """Latest scheduler invocation, as recorded by the runner."""

    at: datetime
    source: str


def validate_cron(cron_expression: str | None) -> str:
    """Return the stripped expression, or raise ``InvalidConfigError``."""
    expression = (cron_expression or "").strip()
    if not expression or not croniter.is_valid(expression):
        raise InvalidConfigError("cron_expression", cron_expression)
    return expression


def _load_json(value: Any) -> dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, dict):
        return value
    try:
        data = json.loads(value)
    except ValueError:
        logger.warning("task.corrupt_json_column", value=str(value)[:200])
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class TaskRepository:
    """Repository for task CRUD and the engine's claim / complete primitives.

    Example:
        >>> repo = TaskRepository(conn)
        >>> task = repo.create(TaskCreate(type="logrotate", cron_expression="0 3 * * *"))
        >>> claimed = repo.find_next_due_task()
        >>> repo.complete_task(claimed, Status.OK, {})
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Callable[[], datetime] = utc_now,
        *,
        stuck_threshold: int = MIN_STUCK_THRESHOLD,
    ) -> None:
        """Initialize repository with database connection.

        Args:
            conn: Database connection (any backend satisfying Connection protocol)
            dialect: SQL dialect for portable queries. Defaults to SQLiteDialect.
            clock: Source of "now" (UTC); injectable for tests.
            stuck_threshold: Default stuck-lock threshold in minutes (never below 3).
        """
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock = clock
        self.stuck_threshold = max(MIN_STUCK_THRESHOLD, stuck_threshold)

    def _ph(self, count: int) -> str:
        """Generate placeholder string for this dialect."""
        return self.dialect.placeholders(count)

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # === CRUD Operations ===

    def create(self, data: TaskCreate) -> Task:
        """Create a new task.

        The task starts in ``INITIAL_SCHEDULE``; its ``last_execution`` is
        the cron expression's previous match so it does not fire right away.

        Raises:
            InvalidConfigError: Empty type, bad cron expression or run_once value.
        """
        task_type = (data.type or "").strip()
        if not task_type:
            raise InvalidConfigError("type", data.type, "Task type must not be empty")
        expression = validate_cron(data.cron_expression)
        run_once = RunOnce.parse(data.run_once)

        now = self._now()
        previous_match = croniter(expression, now).get_prev(datetime)
        next_execution = self.compute_next_execution(expression, now)

        columns = [
            "site_id",
            "type",
            "cron_expression",
            "enabled",
            "priority",
            "params",
            "storage",
            "last_exit_code",
            "last_execution",
            "next_execution",
            "run_once",
            "created_at",
            "updated_at",
        ]
        sql = (
            f"INSERT INTO sentinel_tasks ({', '.join(columns)}) VALUES ({self._ph(len(columns))}) "
            f"{self.dialect.returning('id')}"
        ).rstrip()
        params = (
            data.site_id,
            task_type,
            expression,
            1 if data.enabled else 0,
            data.priority,
            json.dumps(data.params or {}),
            "{}",
            int(Status.INITIAL_SCHEDULE),
            to_db(previous_match),
            to_db(next_execution),
            run_once.value,
            to_db(now),
            to_db(now),
        )

        with transaction(self.conn, self.dialect):
            cursor = self.conn.execute(sql, params)
            if self.dialect.returning("id"):
                task_id = cursor.fetchone()[0]
            else:
                task_id = cursor.lastrowid

        logger.info("task.created", task_id=task_id, task_type=task_type, cron=expression)
        return self.get(task_id)  # type: ignore[return-value]

    def get(self, task_id: int) -> Task | None:
        """Get task by ID."""
        row = self.conn.execute(
            f"{_SELECT_TASK} WHERE id = {self._ph(1)}",
            (task_id,),
        ).fetchone()
        if not row:
            return None
        return self._row_to_task(row)

    def list_all(self, site_id: int | None = None, enabled: bool | None = None) -> list[Task]:
        """List tasks, optionally filtered by site and enabled flag."""
        where = []
        params: list[Any] = []
        if site_id is not None:
            where.append(f"site_id = {self._ph(1)}")
            params.append(site_id)
        if enabled is not None:
            where.append(f"enabled = {self._ph(1)}")
            params.append(1 if enabled else 0)
        sql = _SELECT_TASK
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY priority, id"
        return [self._row_to_task(row) for row in self.conn.execute(sql, params).fetchall()]

    def update(self, task_id: int, updates: TaskUpdate) -> Task | None:
        """Update caller-editable fields of a task.

        Changing the cron expression recomputes ``next_execution``.

        Returns:
            Updated Task if found, None otherwise
        """
        set_parts = []
        params: list[Any] = []
        now = self._now()

        if updates.cron_expression is not None:
            expression = validate_cron(updates.cron_expression)
            set_parts.append(f"cron_expression = {self._ph(1)}")
            params.append(expression)
            set_parts.append(f"next_execution = {self._ph(1)}")
            params.append(to_db(self.compute_next_execution(expression, now)))
        if updates.enabled is not None:
            set_parts.append(f"enabled = {self._ph(1)}")
            params.append(1 if updates.enabled else 0)
        if updates.priority is not None:
            set_parts.append(f"priority = {self._ph(1)}")
            params.append(updates.priority)
        if updates.params is not None:
            set_parts.append(f"params = {self._ph(1)}")
            params.append(json.dumps(updates.params))
        if updates.run_once is not None:
            set_parts.append(f"run_once = {self._ph(1)}")
            params.append(RunOnce.parse(updates.run_once).value)
        if updates.site_id is not None:
            set_parts.append(f"site_id = {self._ph(1)}")
            params.append(updates.site_id)

        if not set_parts:
            return self.get(task_id)

        set_parts.append(f"updated_at = {self._ph(1)}")
        params.append(to_db(now))
        params.append(task_id)

        with transaction(self.conn, self.dialect):
            cursor = self.conn.execute(
                f"UPDATE sentinel_tasks SET {', '.join(set_parts)} WHERE id = {self._ph(1)}",
                params,
            )
            found = cursor.rowcount > 0
        if not found:
            return None
        logger.info("task.updated", task_id=task_id)
        return self.get(task_id)

    def delete(self, task_id: int) -> bool:
        """Delete a task. Returns False if it did not exist."""
        with transaction(self.conn, self.dialect):
            cursor = self.conn.execute(
                f"DELETE FROM sentinel_tasks WHERE id = {self._ph(1)}",
                (task_id,),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("task.deleted", task_id=task_id)
        return deleted

    def count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM sentinel_tasks").fetchone()
        return int(row[0]) if row else 0

    # === Engine Operations ===

    def find_next_due_task(self) -> Task | None:
        """Claim the most urgent due task.

        Candidates are enabled, unlocked rows that either continue a
        ``WILL_RESUME`` run or whose ``next_execution`` has passed.  The
        claimed row is returned with ``locked`` set and ``last_exit_code``
        ``RUNNING``; ``previous_exit_code`` carries the outcome it had before.
        """
        ph = self.dialect.placeholder
        select_sql = (
            f"{_SELECT_TASK} "
            f"WHERE enabled = 1 AND locked IS NULL "
            f"AND (last_exit_code = {ph(0)} "
            f"OR (next_execution IS NOT NULL AND next_execution <= {ph(1)})) "
            f"ORDER BY priority, next_execution, id "
            f"{self.dialect.limit(1)} {self.dialect.lock_clause()}"
        ).rstrip()
        claim_sql = (
            f"UPDATE sentinel_tasks SET locked = {ph(0)}, last_exit_code = {ph(1)}, "
            f"last_execution = {ph(2)}, updated_at = {ph(3)} "
            f"WHERE id = {ph(4)} AND locked IS NULL"
        )

        for _ in range(MAX_CLAIM_ATTEMPTS):
            now = self._now()
            now_db = to_db(now)

            begin = self.dialect.begin_transaction()
            if begin:
                self.conn.execute(begin)
            try:
                row = self.conn.execute(select_sql, (int(Status.WILL_RESUME), now_db)).fetchone()
                if row is None:
                    self.conn.rollback()
                    return None
                task = self._row_to_task(row)
                claimed = self.conn.execute(
                    claim_sql,
                    (now_db, int(Status.RUNNING), now_db, now_db, task.id),
                ).rowcount
                if claimed != 1:
                    # Lost the row to a concurrent claimer.
                    self.conn.rollback()
                    logger.debug("task.claim_lost", task_id=task.id)
                    continue
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

            task.previous_exit_code = task.last_exit_code
            task.locked = from_db(now_db)
            task.last_exit_code = Status.RUNNING
            task.last_execution = from_db(now_db)
            task.updated_at = from_db(now_db)
            logger.info(
                "task.claimed",
                task_id=task.id,
                task_type=task.type,
                site_id=task.site_id,
                resuming=task.resuming,
            )
            return task

        logger.warning("task.claim_contended", attempts=MAX_CLAIM_ATTEMPTS)
        return None

    def complete_task(self, task: Task, status: Status | int, storage: dict[str, Any] | None) -> Task | None:
        """Release a claimed task and record its outcome.

        ``next_execution`` is recomputed from the *current* cron expression
        strictly after the completion time for terminal outcomes, and left
        alone for ``WILL_RESUME``.  Run-once tasks are disabled or deleted
        after a terminal outcome; a ``DELETE`` task that raised or had no
        handler (``KEEP_AFTER_FAILURE``) is disabled instead so its error
        stays inspectable.

        Returns:
            The refreshed task, or None when it was deleted.

        Raises:
            TaskNotFoundError: The row no longer exists.
        """
        status = Status.coerce(status)
        now = self._now()
        now_db = to_db(now)
        storage_json = json.dumps(storage or {}, default=str)
        failed = 1 if status.is_failure else 0

        deleted = False
        with transaction(self.conn, self.dialect):
            row = self.conn.execute(
                f"SELECT cron_expression, run_once, locked FROM sentinel_tasks WHERE id = {self._ph(1)}",
                (task.id,),
            ).fetchone()
            if row is None:
                raise TaskNotFoundError(task.id)
            cron_expression, run_once_raw, locked = row[0], row[1], row[2]
            if locked is None:
                logger.warning("task.completed_after_release", task_id=task.id)
            run_once = RunOnce.parse(run_once_raw)

            set_parts = [
                "locked = NULL",
                f"last_exit_code = {self._ph(1)}",
                f"last_execution = {self._ph(1)}",
                f"last_run_end = {self._ph(1)}",
                "times_executed = times_executed + 1",
                f"times_failed = times_failed + {self._ph(1)}",
                f"storage = {self._ph(1)}",
                f"updated_at = {self._ph(1)}",
            ]
            params: list[Any] = [
                int(status),
                to_db(task.last_execution) or now_db,
                now_db,
                failed,
                storage_json,
                now_db,
            ]

            if status.is_terminal:
                set_parts.append(f"next_execution = {self._ph(1)}")
                params.append(to_db(self._next_or_none(cron_expression, now)))
                keep = status in KEEP_AFTER_FAILURE
                if run_once is RunOnce.DISABLE or (run_once is RunOnce.DELETE and keep):
                    set_parts.append("enabled = 0")
                deleted = run_once is RunOnce.DELETE and not keep

            params.append(task.id)
            updated = self.conn.execute(
                f"UPDATE sentinel_tasks SET {', '.join(set_parts)} WHERE id = {self._ph(1)}",
                params,
            ).rowcount
            if updated != 1:
                raise TaskNotFoundError(task.id)
            if deleted:
                self.conn.execute(f"DELETE FROM sentinel_tasks WHERE id = {self._ph(1)}", (task.id,))

        logger.info(
            "task.completed",
            task_id=task.id,
            task_type=task.type,
            status=status.name,
            run_once=run_once.value,
            deleted=deleted,
        )
        if deleted:
            return None
        return self.get(task.id)

    def mark_no_release(self, task: Task) -> bool:
        """Best-effort fallback when ``complete_task`` itself failed.

        Unlocks the row and records ``NO_RELEASE`` so the task is neither
        left locked nor mistaken for a success.
        """
        now_db = to_db(self._now())
        with transaction(self.conn, self.dialect):
            cursor = self.conn.execute(
                f"""
                UPDATE sentinel_tasks
                SET locked = NULL, last_exit_code = {self._ph(1)}, last_run_end = {self._ph(1)},
                    times_executed = times_executed + 1, times_failed = times_failed + 1,
                    updated_at = {self._ph(1)}
                WHERE id = {self._ph(1)}
                """,
                (int(Status.NO_RELEASE), now_db, now_db, task.id),
            )
            return cursor.rowcount == 1

    def is_stuck(self, task: Task, threshold: int | None = None) -> bool:
        """True when the task has been RUNNING under a lock longer than the threshold.

        Read-only: detection never releases the lock.
        """
        if task.locked is None or task.last_exit_code is not Status.RUNNING:
            return False
        return self._now() - ensure_utc(task.locked) > self._threshold(threshold)

    def list_stuck(self, threshold: int | None = None) -> list[Task]:
        cutoff = to_db(self._now() - self._threshold(threshold))
        rows = self.conn.execute(
            f"{_SELECT_TASK} WHERE locked IS NOT NULL AND last_exit_code = {self._ph(1)} "
            f"AND locked < {self._ph(1)} ORDER BY locked, id",
            (int(Status.RUNNING), cutoff),
        ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def release_stuck(self, threshold: int | None = None) -> int:
        """Operator remediation: record TIMEOUT for stuck tasks and unlock them.

        Returns the number of released tasks.
        """
        released = 0
        now = self._now()
        for task in self.list_stuck(threshold):
            with transaction(self.conn, self.dialect):
                cursor = self.conn.execute(
                    f"""
                    UPDATE sentinel_tasks
                    SET locked = NULL, last_exit_code = {self._ph(1)}, last_run_end = {self._ph(1)},
                        storage = '{{}}', times_failed = times_failed + 1,
                        next_execution = {self._ph(1)}, updated_at = {self._ph(1)}
                    WHERE id = {self._ph(1)} AND locked = {self._ph(1)} AND last_exit_code = {self._ph(1)}
                    """,
                    (
                        int(Status.TIMEOUT),
                        to_db(now),
                        to_db(self._next_or_none(task.cron_expression, now)),
                        to_db(now),
                        task.id,
                        to_db(task.locked),
                        int(Status.RUNNING),
                    ),
                )
                if cursor.rowcount == 1:
                    released += 1
                    logger.warning("task.stuck_released", task_id=task.id, task_type=task.type)
        return released

    # === Cron ===

    def compute_next_execution(self, cron_expression: str, after: datetime) -> datetime:
        """Next cron match strictly after ``after``, in UTC.

        Raises:
            InvalidConfigError: The expression does not parse.
        """
        expression = validate_cron(cron_expression)
        return ensure_utc(croniter(expression, ensure_utc(after)).get_next(datetime))

    def _next_or_none(self, cron_expression: str, after: datetime) -> datetime | None:
        # A row edited behind the repository's back may hold a bad expression;
        # the task then simply stops being due instead of failing completion.
        try:
            return self.compute_next_execution(cron_expression, after)
        except InvalidConfigError:
            logger.error("task.invalid_cron", cron=cron_expression)
            return None

    def _threshold(self, threshold: int | None) -> timedelta:
        minutes = max(MIN_STUCK_THRESHOLD, threshold if threshold is not None else self.stuck_threshold)
        return timedelta(minutes=minutes)

    # === Runner heartbeat ===

    def record_runner_heartbeat(self, source: str = "cli") -> None:
        """Store the time of the latest scheduler invocation."""
        value = json.dumps({"at": to_db(self._now()), "source": source})
        with transaction(self.conn, self.dialect):
            self.conn.execute(
                self.dialect.upsert("sentinel_common", ["name", "value"], ["name"]),
                (HEARTBEAT_KEY, value),
            )

    def last_runner_heartbeat(self) -> RunnerHeartbeat | None:
        row = self.conn.execute(
            f"SELECT value FROM sentinel_common WHERE name = {self._ph(1)}",
            (HEARTBEAT_KEY,),
        ).fetchone()
        if not row:
            return None
        data = _load_json(row[0])
        at = from_db(data.get("at"))
        if at is None:
            return None
        return RunnerHeartbeat(at=at, source=str(data.get("source", "")))

    # === Private Helpers ===

    def _row_to_task(self, row: Any) -> Task:
        """Convert database row to Task model."""
        data = dict(zip(_TASK_COLUMNS, row, strict=False))
        try:
            last_exit_code = Status(int(data["last_exit_code"]))
        except (TypeError, ValueError):
            last_exit_code = Status.INVALID_EXIT
        return Task(
            id=int(data["id"]),
            site_id=data["site_id"],
            type=data["type"],
            cron_expression=data["cron_expression"],
            enabled=bool(data["enabled"]),
            priority=int(data["priority"] or 0),
            params=_load_json(data["params"]),
            storage=_load_json(data["storage"]),
            locked=from_db(data["locked"]),
            last_exit_code=last_exit_code,
            last_execution=from_db(data["last_execution"]),
            last_run_end=from_db(data["last_run_end"]),
            next_execution=from_db(data["next_execution"]),
            times_executed=int(data["times_executed"] or 0),
            times_failed=int(data["times_failed"] or 0),
            run_once=RunOnce.parse(data["run_once"]),
            created_at=from_db(data["created_at"]),
            updated_at=from_db(data["updated_at"]),
        )


__all__ = [
    "TaskRepository",
    "RunnerHeartbeat",
    "validate_cron",
    "MAX_CLAIM_ATTEMPTS",
    "HEARTBEAT_KEY",
    "KEEP_AFTER_FAILURE",
]
