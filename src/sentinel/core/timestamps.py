"""
UTC timestamp utilities.

Every timestamp the scheduler persists (lock time, next execution, queue
``not_before``) is stored as a fixed-width UTC string so that plain string
comparison in SQL (``next_execution <= ?``) orders the same way the
datetimes do, on every backend.

Manifesto:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_db() / from_db():** Sortable storage round-trip
    - **to_iso8601():** Human / JSON output

Examples:
    >>> from datetime import datetime, UTC
    >>> to_db(datetime(2024, 1, 1, 10, 5, tzinfo=UTC))
    '2024-01-01 10:05:00.000000'
    >>> from_db('2024-01-01 10:05:00.000000').tzinfo
    datetime.timezone.utc

Tags:
    timestamps, utc, datetime, sentinel, serialization

Doc-Types:
    - API Reference
"""

from datetime import UTC, datetime

DB_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db(dt: datetime | None) -> str | None:
    """Format a datetime for storage (fixed width, UTC)."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime(DB_FORMAT)


def from_db(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()
