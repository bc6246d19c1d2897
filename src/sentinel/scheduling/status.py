"""Task outcome codes and run-once dispositions.

``Status`` values are persisted in ``sentinel_tasks.last_exit_code``; the
numbers are part of the storage format and must never change.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from sentinel.core.errors import InvalidConfigError


class Status(IntEnum):
    """Outcome of one task attempt."""

    # Exit code was not an integer (or not a known code)
    INVALID_EXIT = -2
    # Handler returned None
    NO_EXIT = -1
    OK = 0
    # Claimed, no outcome recorded yet
    RUNNING = 1
    NO_LOCK = 2
    NO_RUN = 3
    # Could not release the lock / write the outcome
    NO_RELEASE = 4
    # Handler raised
    EXCEPTION = 5
    # Never run
    INITIAL_SCHEDULE = 100
    # Partial work done, claim again as soon as possible
    WILL_RESUME = 123
    # Stuck lock released by an operator
    TIMEOUT = 124
    # Task row vanished
    NO_TASK = 125
    # No handler for the task type
    NO_ROUTINE = 127

    @property
    def is_failure(self) -> bool:
        """True for outcomes that count towards ``times_failed``."""
        return self not in _NON_FAILURES

    @property
    def is_terminal(self) -> bool:
        """True for every completion outcome except a continuation."""
        return self is not Status.WILL_RESUME

    def for_humans(self) -> str:
        return _LABELS[self]

    @classmethod
    def coerce(cls, value: Any) -> Status:
        """Turn a handler's return value into a completion outcome.

        ``None`` means the handler returned nothing (``NO_EXIT``). Anything
        that is not a known integer code, and ``RUNNING`` itself, is an
        ``INVALID_EXIT``.
        """
        if value is None:
            return cls.NO_EXIT
        if isinstance(value, bool) or not isinstance(value, int):
            return cls.INVALID_EXIT
        try:
            status = cls(value)
        except ValueError:
            return cls.INVALID_EXIT
        if status is cls.RUNNING:
            return cls.INVALID_EXIT
        return status


_NON_FAILURES = frozenset({Status.OK, Status.WILL_RESUME, Status.INITIAL_SCHEDULE, Status.RUNNING})

_LABELS = {
    Status.INVALID_EXIT: "Invalid exit code",
    Status.NO_EXIT: "No exit code",
    Status.OK: "OK",
    Status.RUNNING: "Running",
    Status.NO_LOCK: "Could not acquire lock",
    Status.NO_RUN: "Could not start",
    Status.NO_RELEASE: "Could not release lock",
    Status.EXCEPTION: "Error",
    Status.INITIAL_SCHEDULE: "Never run",
    Status.WILL_RESUME: "Will resume",
    Status.TIMEOUT: "Timed out",
    Status.NO_TASK: "Task not found",
    Status.NO_ROUTINE: "Unknown task type",
}


class RunOnce(str, Enum):
    """What happens to a task after its first terminal outcome."""

    NONE = "none"
    DISABLE = "disable"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: RunOnce | str | None) -> RunOnce:
        if isinstance(value, RunOnce):
            return value
        if value is None or str(value).strip() == "":
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise InvalidConfigError(
                "run_once", value, f"run_once must be one of none, disable, delete; got {value!r}"
            ) from e


__all__ = ["Status", "RunOnce"]
