"""Schema migration runner for Sentinel.

Applies SQL migration files from ``core/schema/<dialect>/`` in filename
order, tracking which have already been applied in the ``_migrations``
table.

Tags:
    sentinel, migrations, schema, database, idempotent, DDL

Doc-Types:
    package-overview
"""

from sentinel.core.migrations.runner import MigrationResult, MigrationRunner

__all__ = ["MigrationResult", "MigrationRunner"]
