"""SQL dialects for the task store and work queue.

Claiming a task and popping a queue item are the two places where several
scheduler invocations race each other, and every backend spells "lock
this row for me" differently. Those differences, plus placeholder style
and upserts, live here so the repositories never import a driver.

Architecture::

    repository SQL
        conn.execute(d.begin_transaction())          # SQLite only
        f"SELECT ... ORDER BY ... {d.limit(1)} {d.lock_clause()}"

    ┌────────────────┬──────────────┬──────────────────────────────┐
    │ dialect        │ placeholder  │ claim                        │
    ├────────────────┼──────────────┼──────────────────────────────┤
    │ sqlite         │ ?            │ BEGIN IMMEDIATE (db lock)    │
    │ postgresql     │ %s           │ FOR UPDATE SKIP LOCKED       │
    │ mysql (8+)     │ %s           │ FOR UPDATE SKIP LOCKED       │
    └────────────────┴──────────────┴──────────────────────────────┘

Examples:
    >>> SQLiteDialect().placeholders(3)
    '?, ?, ?'
    >>> get_dialect("postgres").lock_clause()
    'FOR UPDATE SKIP LOCKED'

Tags:
    dialect, sql, portability, row-locking, sentinel

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """What the repositories need to know about a backend.

    Every method returns a SQL fragment; an empty string means "nothing
    to add" for that backend.
    """

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str:
        """Marker for the ``index``-th (0-based) parameter of a statement."""
        ...

    def placeholders(self, count: int) -> str: ...

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str: ...

    def limit(self, count: int) -> str: ...

    def returning(self, column: str) -> str:
        """``RETURNING`` suffix for an ``INSERT``; empty where ``lastrowid`` works."""
        ...

    def begin_transaction(self) -> str:
        """Statement that opens a write transaction; empty when the driver opens one itself."""
        ...

    def lock_clause(self) -> str:
        """Suffix that row-locks the rows a claim ``SELECT`` returns."""
        ...


class _DialectBase:
    name = "generic"
    marker = "%s"
    #: Word used to refer to the proposed row in ``ON CONFLICT`` updates.
    excluded = "EXCLUDED"

    def placeholder(self, index: int) -> str:
        return self.marker

    def placeholders(self, count: int) -> str:
        return ", ".join([self.marker] * count)

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        assignments = ", ".join(f"{c} = {self.excluded}.{c}" for c in columns if c not in key_columns)
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.placeholders(len(columns))}) "
            f"ON CONFLICT ({', '.join(key_columns)}) DO UPDATE SET {assignments}"
        )

    def limit(self, count: int) -> str:
        return f"LIMIT {int(count)}"

    def returning(self, column: str) -> str:
        return ""

    def begin_transaction(self) -> str:
        return ""

    def lock_clause(self) -> str:
        return "FOR UPDATE SKIP LOCKED"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SQLiteDialect(_DialectBase):
    """``?`` placeholders; claims serialize on the database write lock."""

    name = "sqlite"
    marker = "?"
    excluded = "excluded"

    def begin_transaction(self) -> str:
        # Take the write lock before reading candidates, not on first write.
        return "BEGIN IMMEDIATE"

    def lock_clause(self) -> str:
        return ""


class PostgreSQLDialect(_DialectBase):
    """psycopg placeholders, ``RETURNING`` ids, ``SKIP LOCKED`` claims."""

    name = "postgresql"

    def returning(self, column: str) -> str:
        return f"RETURNING {column}"


class MySQLDialect(_DialectBase):
    """PyMySQL placeholders, ``ON DUPLICATE KEY`` upserts, ``SKIP LOCKED`` claims."""

    name = "mysql"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        assignments = ", ".join(f"{c} = VALUES({c})" for c in columns if c not in key_columns)
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.placeholders(len(columns))}) "
            f"ON DUPLICATE KEY UPDATE {assignments}"
        )


_BY_NAME: dict[str, type[_DialectBase]] = {
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,
    "mysql": MySQLDialect,
}


def get_dialect(db_type: str) -> Dialect:
    """Dialect for ``db_type`` (``sqlite``, ``postgresql``/``postgres`` or ``mysql``).

    Raises:
        ValueError: Unknown database type.
    """
    try:
        return _BY_NAME[db_type.lower()]()
    except KeyError:
        raise ValueError(f"Unknown dialect {db_type!r}; expected sqlite, postgresql or mysql") from None


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect", "MySQLDialect", "get_dialect"]
