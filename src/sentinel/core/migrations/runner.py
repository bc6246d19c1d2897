"""Applies the bundled ``schema/<dialect>/*.sql`` files to a database.

Each file runs in its own transaction and is recorded in ``_migrations``
on success, so running ``sentinel db init`` twice is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from sentinel.core.connection import transaction
from sentinel.core.dialect import Dialect, SQLiteDialect
from sentinel.core.logging import get_logger
from sentinel.core.protocols import Connection
from sentinel.core.timestamps import to_db, utc_now

logger = get_logger(__name__)

SCHEMA_ROOT = Path(__file__).resolve().parent.parent / "schema"

_ID_COLUMN = {
    "sqlite": "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "postgresql": "id SERIAL PRIMARY KEY",
    "mysql": "id INTEGER PRIMARY KEY AUTO_INCREMENT",
}


@dataclass
class MigrationResult:
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


def split_statements(sql: str) -> list[str]:
    """Split a script on ``;`` after dropping whole-line ``--`` comments."""
    body = "\n".join(line for line in sql.splitlines() if not line.lstrip().startswith("--"))
    return [part.strip() for part in body.split(";") if part.strip()]


class MigrationRunner:
    """Brings a database up to the bundled schema.

    Example::

        conn, dialect = open_connection("sqlite:///sentinel.db")
        result = MigrationRunner(conn, dialect).apply_pending()
        assert result.success, result.errors
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        schema_dir: Path | str | None = None,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_ROOT / self.dialect.name
        with transaction(self.conn, self.dialect):
            self.conn.execute(
                "CREATE TABLE IF NOT EXISTS _migrations ("
                f"{_ID_COLUMN[self.dialect.name]}, "
                "filename VARCHAR(255) NOT NULL UNIQUE, "
                "applied_at VARCHAR(26) NOT NULL)"
            )

    def applied(self) -> set[str]:
        rows = self.conn.execute("SELECT filename FROM _migrations").fetchall()
        return {row[0] for row in rows}

    def get_pending(self) -> list[str]:
        done = self.applied()
        return [path.name for path in self._scripts() if path.name not in done]

    def apply_pending(self) -> MigrationResult:
        """Run every pending script in filename order, stopping at the first failure."""
        result = MigrationResult()
        done = self.applied()
        for path in self._scripts():
            if path.name in done:
                result.skipped.append(path.name)
                continue
            try:
                with transaction(self.conn, self.dialect):
                    for statement in split_statements(path.read_text(encoding="utf-8")):
                        self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO _migrations (filename, applied_at) "
                        f"VALUES ({self.dialect.placeholders(2)})",
                        (path.name, to_db(utc_now())),
                    )
            except Exception as e:
                result.errors[path.name] = str(e)
                logger.error("migration.failed", migration=path.name, error=str(e))
                break
            result.applied.append(path.name)
            logger.info("migration.applied", migration=path.name)
        return result

    def _scripts(self) -> list[Path]:
        return sorted(self.schema_dir.glob("*.sql")) if self.schema_dir.is_dir() else []
