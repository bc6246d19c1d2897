"""
Shared pytest fixtures for Sentinel tests.

This module provides:
- A migrated SQLite database per test (file-backed, so threads can open
  their own connections to it)
- A controllable clock for cron / lock-age arithmetic
- Scripted fake handlers and isolated registries

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(repository, clock):
        ...
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from sentinel.core.connection import SqliteConnection
from sentinel.core.dialect import SQLiteDialect
from sentinel.core.logging import configure_logging
from sentinel.core.migrations import MigrationRunner
from sentinel.core.settings import SentinelSettings, clear_settings_cache
from sentinel.queue import SqlQueue
from sentinel.scheduling import (
    ExecutionTimer,
    Status,
    TaskContext,
    TaskRegistry,
    TaskRepository,
    TaskRunner,
)

# =============================================================================
# Helpers
# =============================================================================


class FakeClock:
    """Wall clock the tests move by hand (always UTC)."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


class FakeMonotonic:
    """Monotonic clock for ExecutionTimer tests."""

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ScriptedHandler:
    """Handler returning scripted outcomes and recording every invocation.

    Each entry of ``outcomes`` is used once (the last one repeats). An
    entry may be a status / int / None to return, an exception to raise,
    or a callable ``(task, storage) -> result``.
    """

    def __init__(self, task_type: str = "scripted", outcomes: tuple = (Status.OK,), description: str = "") -> None:
        self._type = task_type
        self._description = description or f"Scripted {task_type}"
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    def invoke(self, task, storage):
        self.calls.append({"task_id": task.id, "params": dict(task.params), "storage": dict(storage)})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(task, storage)
        return outcome

    def task_type(self) -> str:
        return self._type

    def description(self) -> str:
        return self._description


# =============================================================================
# Process-wide setup
# =============================================================================


@pytest.fixture(autouse=True)
def quiet_logging() -> None:
    """Every test starts from WARNING-level console logging and no file sink."""
    configure_logging(level="WARNING", json_format=False, add_timestamp=False)


@pytest.fixture
def verbose_logging(tmp_path: Path) -> Path:
    """INFO-level JSON logging to stderr and a log file, as the CLI sets it up.

    Returns the log file path.
    """
    log_file = tmp_path / "log" / "sentinel.log"
    configure_logging(level="INFO", json_format=True, log_file=log_file)
    return log_file


@pytest.fixture(autouse=True)
def clean_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Each test sees fresh settings, unaffected by the developer's SENTINEL_* env."""
    import os

    for name in list(os.environ):
        if name.startswith("SENTINEL_"):
            monkeypatch.delenv(name)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sentinel.db"


@pytest.fixture
def db_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def conn(db_path: Path, dialect: SQLiteDialect) -> Generator[SqliteConnection, None, None]:
    """Migrated SQLite connection."""
    connection = SqliteConnection(str(db_path))
    result = MigrationRunner(connection, dialect).apply_pending()
    assert result.success, result.errors
    yield connection
    connection.close()


@pytest.fixture
def open_extra_connection(db_path: Path) -> Generator:
    """Factory for additional connections to the same database (threads)."""
    opened: list[SqliteConnection] = []

    def _open() -> SqliteConnection:
        connection = SqliteConnection(str(db_path))
        opened.append(connection)
        return connection

    yield _open
    for connection in opened:
        connection.close()


# =============================================================================
# Scheduling
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Starts at 2024-01-01 10:02 UTC."""
    return FakeClock(datetime(2024, 1, 1, 10, 2, tzinfo=UTC))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def settings(tmp_path: Path, db_url: str) -> SentinelSettings:
    return SentinelSettings(
        database_url=db_url,
        log_dir=tmp_path / "log",
        webcron_key="s3cret-key",
        max_execution=60,
        execution_bias=75,
    )


@pytest.fixture
def repository(conn, dialect, clock) -> TaskRepository:
    return TaskRepository(conn, dialect, clock=clock)


@pytest.fixture
def context(conn, dialect, settings) -> TaskContext:
    return TaskContext(conn=conn, dialect=dialect, settings=settings)


@pytest.fixture
def registry(context) -> TaskRegistry:
    """Empty registry (no package scan)."""
    return TaskRegistry(context, auto_populate=False)


@pytest.fixture
def make_handler():
    """Build a ScriptedHandler: ``make_handler("mail", Status.OK)``."""

    def _make(task_type: str = "scripted", *outcomes: Any, description: str = "") -> ScriptedHandler:
        return ScriptedHandler(task_type, outcomes or (Status.OK,), description)

    return _make


@pytest.fixture
def runner(repository, registry, settings, monotonic) -> TaskRunner:
    """Runner with a 45 s budget on a fake monotonic clock."""
    timer = ExecutionTimer(settings.max_execution, settings.execution_bias, clock=monotonic)
    return TaskRunner(repository, registry, timer=timer, settings=settings)


@pytest.fixture
def make_queue(conn, dialect, clock):
    def _make(identifier: str) -> SqlQueue:
        return SqlQueue(identifier, conn, dialect, clock=clock)

    return _make
