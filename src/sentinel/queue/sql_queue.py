"""Persistent work queue stored in the shared database.

Handlers that have too much work for one scheduler tick (mail to send,
extensions to update on many sites) push queue items and return
``Status.WILL_RESUME``; the next claim pops the next item.  Several
scheduler processes may pop from the same queue at once, so every pop is
a single transaction that locks, deletes and returns exactly one row.

┌──────────────────────────────────────────────────────────────────────┐
│  SqlQueue("mail", conn, dialect)                                     │
│                                                                      │
│  push(item, not_before)   INSERT, one short transaction              │
│  pop()                    BEGIN                                      │
│                             SELECT earliest due row (row-locked)     │
│                             DELETE that row by id                    │
│                           COMMIT, return item (or None)              │
│  clear(conditions)        DELETE matching rows                       │
│  count()                  read-only                                  │
│  count_by_condition(..)   read-only                                  │
└──────────────────────────────────────────────────────────────────────┘

Conditions match the stored item's fields: ``siteId`` (``site_id``),
``dataType``, ``data`` (whole payload) or, for dict payloads, a key of
the payload.  A ``queueType`` condition is ignored; the queue identifier
already selects it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sentinel.core.connection import transaction
from sentinel.core.dialect import Dialect, SQLiteDialect
from sentinel.core.errors import QueuePayloadError
from sentinel.core.logging import get_logger
from sentinel.core.protocols import Connection
from sentinel.core.timestamps import ensure_utc, to_db, utc_now
from sentinel.queue.item import QueueItem, QueueType

logger = get_logger(__name__)

#: Pops give up after losing this many races in a row.
MAX_POP_ATTEMPTS = 10

_MISSING = object()

TimeLike = datetime | int | float | str | None


def normalise_time(value: TimeLike, now: datetime) -> datetime:
    """Turn a ``not_before`` argument into an aware UTC datetime.

    Unparseable strings and empty values mean "now".
    """
    if value is None or value == "" or isinstance(value, bool):
        return now
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, UTC)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).strip()))
    except ValueError:
        logger.warning("queue.unparseable_time", value=value)
        return now


def _matches(item: QueueItem, conditions: dict[str, Any]) -> bool:
    for key, expected in conditions.items():
        if key == "data":
            actual = item.data
        elif key == "dataType":
            actual = item.data_type
        elif isinstance(item.data, dict):
            actual = item.data.get(key, _MISSING)
        else:
            return False
        if actual != expected:
            return False
    return True


class SqlQueue:
    """Work queue backed by the ``sentinel_queue`` table.

    Example:
        >>> queue = SqlQueue("mail", conn)
        >>> queue.push(QueueItem({"to": "a@example.com"}, "mail", site_id=1))
        >>> queue.pop().data
        {'to': 'a@example.com'}
    """

    def __init__(
        self,
        identifier: QueueType | str,
        conn: Connection,
        dialect: Dialect | None = None,
        table: str = "sentinel_queue",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        name = identifier.value if isinstance(identifier, QueueType) else str(identifier)
        self.identifier = name.strip().lower()
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.table = table
        self.clock = clock

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    # -- writes ------------------------------------------------------------

    def push(self, item: QueueItem, not_before: TimeLike = None) -> None:
        """Add an item; it becomes poppable once ``not_before`` has passed."""
        if item.queue_type != self.identifier:
            raise QueuePayloadError(
                f"Item for queue {item.queue_type!r} pushed to queue {self.identifier!r}"
            )
        when = normalise_time(not_before, self.clock())
        with transaction(self.conn, self.dialect):
            self.conn.execute(
                f"INSERT INTO {self.table} (queue, not_before, site_id, payload) VALUES ({self._ph(4)})",
                (self.identifier, to_db(when), item.site_id, item.to_json()),
            )
        logger.debug("queue.pushed", queue=self.identifier, site_id=item.site_id, not_before=to_db(when))

    def pop(self) -> QueueItem | None:
        """Remove and return the earliest due item, or ``None``."""
        ph = self.dialect.placeholder
        select_sql = (
            f"SELECT id, payload FROM {self.table} "
            f"WHERE queue = {ph(0)} AND not_before <= {ph(1)} "
            f"ORDER BY not_before, id {self.dialect.limit(1)} {self.dialect.lock_clause()}"
        ).rstrip()
        delete_sql = f"DELETE FROM {self.table} WHERE id = {ph(0)}"

        for _ in range(MAX_POP_ATTEMPTS):
            begin = self.dialect.begin_transaction()
            if begin:
                self.conn.execute(begin)
            try:
                row = self.conn.execute(select_sql, (self.identifier, to_db(self.clock()))).fetchone()
                if row is None:
                    self.conn.rollback()
                    return None
                row_id, payload = row[0], row[1]
                deleted = self.conn.execute(delete_sql, (row_id,)).rowcount
                if deleted != 1:
                    # Another popper got there first.
                    self.conn.rollback()
                    continue
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

            try:
                item = QueueItem.from_json(payload)
            except QueuePayloadError as e:
                logger.error("queue.corrupt_item_dropped", queue=self.identifier, id=row_id, error=str(e))
                continue
            logger.debug("queue.popped", queue=self.identifier, id=row_id)
            return item

        logger.warning("queue.pop_contended", queue=self.identifier, attempts=MAX_POP_ATTEMPTS)
        return None

    def clear(self, conditions: dict[str, Any] | None = None) -> int:
        """Delete items of this queue matching ``conditions`` (all when empty).

        Returns the number of deleted items.
        """
        with transaction(self.conn, self.dialect):
            ids = [row_id for row_id, _ in self._select_matching(conditions)]
            for row_id in ids:
                self.conn.execute(f"DELETE FROM {self.table} WHERE id = {self._ph(1)}", (row_id,))
        logger.info("queue.cleared", queue=self.identifier, deleted=len(ids))
        return len(ids)

    # -- reads -------------------------------------------------------------

    def count(self) -> int:
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM {self.table} WHERE queue = {self._ph(1)}",
            (self.identifier,),
        ).fetchone()
        return int(row[0]) if row else 0

    def count_by_condition(self, conditions: dict[str, Any] | None = None) -> int:
        conditions = {k: v for k, v in (conditions or {}).items() if k != "queueType"}
        if not conditions:
            return self.count()
        return len(self._select_matching(conditions))

    # -- helpers -----------------------------------------------------------

    def _select_matching(self, conditions: dict[str, Any] | None) -> list[tuple[Any, QueueItem | None]]:
        conditions = dict(conditions or {})
        conditions.pop("queueType", None)

        sql = f"SELECT id, payload FROM {self.table} WHERE queue = {self._ph(1)}"
        params: list[Any] = [self.identifier]
        site_ids = [conditions.pop(key) for key in ("siteId", "site_id") if key in conditions]
        for site_id in site_ids:
            if site_id is None:
                sql += " AND site_id IS NULL"
            else:
                sql += f" AND site_id = {self._ph(1)}"
                params.append(site_id)
        sql += " ORDER BY not_before, id"

        rows = self.conn.execute(sql, params).fetchall()
        if not conditions:
            return [(row[0], None) for row in rows]

        matching = []
        for row in rows:
            try:
                item = QueueItem.from_json(row[1])
            except QueuePayloadError:
                continue
            if _matches(item, conditions):
                matching.append((row[0], item))
        return matching

    def __repr__(self) -> str:
        return f"SqlQueue({self.identifier!r}, table={self.table!r})"


class QueueFactory:
    """Creates queues bound to one connection."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None, table: str = "sentinel_queue") -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.table = table

    def make(self, identifier: QueueType | str) -> SqlQueue:
        return SqlQueue(identifier, self.conn, self.dialect, self.table)


__all__ = ["SqlQueue", "QueueFactory", "normalise_time", "MAX_POP_ATTEMPTS"]
