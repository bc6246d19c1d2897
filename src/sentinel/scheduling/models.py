"""Task table model and DTOs (``sentinel_tasks``).

Tags:
    sentinel, models, scheduling, dataclasses, cron

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sentinel.core.timestamps import to_iso8601
from sentinel.scheduling.status import RunOnce, Status

# ---------------------------------------------------------------------------
# sentinel_tasks
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """Scheduled task row (``sentinel_tasks``)."""

    id: int = 0
    site_id: int | None = None
    type: str = ""
    cron_expression: str = ""
    enabled: bool = True
    priority: int = 0
    params: dict[str, Any] = field(default_factory=dict)
    storage: dict[str, Any] = field(default_factory=dict)
    locked: datetime | None = None  # set while an invocation holds the task
    last_exit_code: Status = Status.INITIAL_SCHEDULE
    last_execution: datetime | None = None  # start of the latest attempt
    last_run_end: datetime | None = None
    next_execution: datetime | None = None
    times_executed: int = 0
    times_failed: int = 0
    run_once: RunOnce = RunOnce.NONE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # Outcome recorded before the current claim; only set on claimed tasks.
    previous_exit_code: Status | None = None

    @property
    def resuming(self) -> bool:
        """True when this claim continues a ``WILL_RESUME`` run."""
        return self.previous_exit_code is Status.WILL_RESUME

    @property
    def is_locked(self) -> bool:
        return self.locked is not None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (CLI / API output)."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = to_iso8601(value)
        data["last_exit_code"] = int(self.last_exit_code)
        data["last_exit_label"] = self.last_exit_code.for_humans()
        data["run_once"] = self.run_once.value
        data.pop("previous_exit_code")
        return data


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class TaskCreate:
    """DTO for creating a new task."""

    type: str
    cron_expression: str
    site_id: int | None = None
    params: dict[str, Any] | None = None
    enabled: bool = True
    priority: int = 0
    run_once: RunOnce | str = RunOnce.NONE


@dataclass
class TaskUpdate:
    """DTO for updating a task.

    Only caller-editable fields; lock state and counters belong to the engine.
    """

    cron_expression: str | None = None
    enabled: bool | None = None
    priority: int | None = None
    params: dict[str, Any] | None = None
    run_once: RunOnce | str | None = None
    site_id: int | None = None


__all__ = ["Task", "TaskCreate", "TaskUpdate"]
