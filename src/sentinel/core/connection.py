"""Database connection adapters and transaction helper.

Wraps raw DB-API connections so they satisfy the
:class:`~sentinel.core.protocols.Connection` protocol, and opens the right
one for a ``SENTINEL_DATABASE_URL``.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor)
but not ``fetchone()`` / ``fetchall()`` at the connection level.  The
adapters bridge the gap so the task store and the work queue run
identically on SQLite, PostgreSQL and MySQL.

SQLite connections run in autocommit mode: every write transaction is
opened explicitly with ``BEGIN IMMEDIATE`` (see
:meth:`SQLiteDialect.begin_transaction`) so that two scheduler processes
racing for the same row serialize on the database write lock instead of
deadlocking on a lock upgrade.

Usage::

    from sentinel.core.connection import open_connection, transaction

    conn, dialect = open_connection("sqlite:///sentinel.db")
    with transaction(conn, dialect):
        conn.execute("UPDATE sentinel_tasks SET enabled = 0 WHERE id = ?", (3,))
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from sentinel.core.dialect import Dialect, SQLiteDialect, get_dialect
from sentinel.core.errors import DatabaseConnectionError, InvalidConfigError, MissingConfigError
from sentinel.core.logging import get_logger
from sentinel.core.protocols import Connection

logger = get_logger(__name__)

#: Seconds a SQLite writer waits for the database lock before failing.
SQLITE_BUSY_TIMEOUT = 30.0


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        timeout: float = SQLITE_BUSY_TIMEOUT,
        row_factory: Any = sqlite3.Row,
    ) -> None:
        self.path = path
        self._conn = sqlite3.connect(
            path,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = row_factory
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._cursor = self._conn.cursor()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple | list = ()) -> Any:
        self._cursor.execute(sql, tuple(params))
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        if self._conn.in_transaction:
            self._conn.commit()

    def rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"


class DbApiConnection:
    """Adapter for server databases (psycopg, PyMySQL).

    Same single-cursor shape as :class:`SqliteConnection`. The drivers open a
    transaction implicitly on the first statement after ``commit()``.
    """

    def __init__(self, raw: Any) -> None:
        self._conn = raw
        self._cursor = raw.cursor()

    def execute(self, sql: str, params: tuple | list = ()) -> Any:
        self._cursor.execute(sql, tuple(params))
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    @property
    def raw(self) -> Any:
        return self._conn

    def __repr__(self) -> str:
        return f"DbApiConnection({self._conn!r})"


def _sqlite_path(url: str) -> str:
    # sqlite:///relative.db, sqlite:////abs/path.db, sqlite:///:memory:
    path = url.split(":///", 1)[1] if ":///" in url else ""
    if not path:
        raise InvalidConfigError("database_url", url, "SQLite URL needs a path: sqlite:///file.db")
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return path


def open_connection(url: str) -> tuple[Connection, Dialect]:
    """Open a connection for a database URL and return it with its dialect.

    Supported schemes: ``sqlite``, ``postgresql`` / ``postgres`` (needs
    ``psycopg``), ``mysql`` (needs ``PyMySQL``).

    Raises:
        MissingConfigError: ``url`` is empty.
        InvalidConfigError: Unknown scheme or malformed URL.
        DatabaseConnectionError: The database could not be reached.
    """
    if not url or not url.strip():
        raise MissingConfigError("database_url")
    scheme = url.split(":", 1)[0].split("+", 1)[0].lower()

    if scheme == "sqlite":
        path = _sqlite_path(url)
        try:
            conn = SqliteConnection(path)
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Cannot open SQLite database {path}: {e}", cause=e) from e
        return conn, SQLiteDialect()

    if scheme in ("postgresql", "postgres"):
        try:
            import psycopg
        except ImportError as exc:
            raise ImportError(
                "PostgreSQL support requires 'psycopg'. Install with: pip install sentinel-scheduler[postgres]"
            ) from exc
        try:
            raw = psycopg.connect(url.replace("postgresql+psycopg", "postgresql", 1))
        except psycopg.Error as e:
            raise DatabaseConnectionError(f"Cannot connect to PostgreSQL: {e}", cause=e) from e
        return DbApiConnection(raw), get_dialect("postgresql")

    if scheme == "mysql":
        try:
            import pymysql
        except ImportError as exc:
            raise ImportError(
                "MySQL support requires 'PyMySQL'. Install with: pip install sentinel-scheduler[mysql]"
            ) from exc
        parsed = urlparse(url)
        try:
            raw = pymysql.connect(
                host=parsed.hostname or "localhost",
                port=parsed.port or 3306,
                user=unquote(parsed.username or ""),
                password=unquote(parsed.password or ""),
                database=parsed.path.lstrip("/"),
                autocommit=False,
            )
        except pymysql.MySQLError as e:
            raise DatabaseConnectionError(f"Cannot connect to MySQL: {e}", cause=e) from e
        return DbApiConnection(raw), get_dialect("mysql")

    raise InvalidConfigError("database_url", url, f"Unsupported database scheme: {scheme!r}")


@contextmanager
def transaction(conn: Connection, dialect: Dialect) -> Iterator[Connection]:
    """Run the block in one write transaction.

    Commits on success; rolls back and re-raises on any exception.
    """
    begin = dialect.begin_transaction()
    if begin:
        conn.execute(begin)
    try:
        yield conn
    except BaseException:
        try:
            conn.rollback()
        except Exception as rollback_error:  # noqa: BLE001
            logger.warning("transaction.rollback_failed", error=str(rollback_error))
        raise
    else:
        conn.commit()


__all__ = [
    "SQLITE_BUSY_TIMEOUT",
    "SqliteConnection",
    "DbApiConnection",
    "open_connection",
    "transaction",
]
