"""
The database connection shape every Sentinel component is written against.

The task store, the work queue, the migration runner and handler code only
ever see this protocol. ``SqliteConnection`` implements it for single-host
installs and tests; ``DbApiConnection`` wraps psycopg and PyMySQL for a
server database shared by several hosts.

Tags:
    protocol, connection, database, sentinel
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Synchronous DB-API subset.

    ``execute`` returns the cursor (``fetchone``, ``fetchall``,
    ``rowcount``, ``lastrowid``). Callers open write transactions with
    :func:`sentinel.core.connection.transaction` and end them with
    ``commit`` or ``rollback``.
    """

    def execute(self, sql: str, params: tuple | list = ()) -> Any: ...

    def executemany(self, sql: str, params: list[tuple]) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


__all__ = ["Connection"]
