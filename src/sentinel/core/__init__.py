"""
Sentinel core primitives.

Infrastructure shared by the scheduler, the work queue and the entry
points: errors, logging, settings, database connection/dialect, UTC
timestamps and schema migrations.

Modules
-------
errors       SentinelError hierarchy
logging      structlog configuration and context binding
settings     SentinelSettings (pydantic-settings, SENTINEL_* env vars)
protocols    Connection protocol
dialect      SQL dialects (SQLite, PostgreSQL, MySQL)
connection   Connection adapters, open_connection(), transaction()
timestamps   utc_now(), to_db() / from_db()
migrations   MigrationRunner

Tags:
    sentinel, core, infrastructure

Doc-Types:
    package-overview
"""

from sentinel.core.connection import open_connection, transaction
from sentinel.core.dialect import Dialect, get_dialect
from sentinel.core.errors import SentinelError
from sentinel.core.logging import configure_logging, get_logger
from sentinel.core.protocols import Connection
from sentinel.core.settings import SentinelSettings, get_settings
from sentinel.core.timestamps import utc_now

__all__ = [
    "Connection",
    "Dialect",
    "SentinelError",
    "SentinelSettings",
    "configure_logging",
    "get_dialect",
    "get_logger",
    "get_settings",
    "open_connection",
    "transaction",
    "utc_now",
]
