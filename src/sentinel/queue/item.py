"""Queue item: one unit of deferred work.

A queue item carries a JSON payload, the name of the queue it belongs to
and optionally the site it concerns.  Payloads are plain JSON values:
scalars, or one list / dict of JSON values.  Anything that would not
survive a JSON round trip is rejected when the item is built, not when a
later scheduler tick tries to read it back.
"""

from __future__ import annotations

import json
import math
from enum import Enum
from typing import Any

from sentinel.core.errors import QueuePayloadError


class QueueType(str, Enum):
    """Well-known queue names."""

    MAIL = "mail"
    EXTENSIONS = "extensions"
    PLUGINS = "plugins"
    WEBPUSH = "webpush"


_DATA_TYPES = (
    (bool, "bool"),
    (int, "int"),
    (float, "float"),
    (str, "str"),
    (list, "list"),
    (dict, "dict"),
)


def _normalise_payload(value: Any, path: tuple[int, ...] = ()) -> Any:
    """Validate a payload and return it with tuples turned into lists."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise QueuePayloadError(f"Queue payload contains a non-finite float: {value!r}")
        return value
    if isinstance(value, QueueItem):
        raise QueuePayloadError("A queue item cannot carry another queue item")
    if isinstance(value, (list, tuple, dict)):
        if id(value) in path:
            raise QueuePayloadError("Queue payload is self-referencing")
        path = path + (id(value),)
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise QueuePayloadError(f"Queue payload keys must be strings, got {key!r}")
                result[key] = _normalise_payload(item, path)
            return result
        return [_normalise_payload(item, path) for item in value]
    raise QueuePayloadError(f"Queue payload of type {type(value).__name__} is not JSON-serialisable")


def data_type_of(value: Any) -> str:
    if value is None:
        return "null"
    for python_type, name in _DATA_TYPES:
        if isinstance(value, python_type):
            return name
    raise QueuePayloadError(f"Unsupported payload type {type(value).__name__}")


class QueueItem:
    """An item stored in a work queue.

    Example:
        >>> item = QueueItem({"to": "admin@example.com"}, QueueType.MAIL, site_id=4)
        >>> item.data_type
        'dict'
        >>> QueueItem.from_json(item.to_json()) == item
        True
    """

    def __init__(self, data: Any, queue_type: QueueType | str, site_id: int | None = None) -> None:
        self.data = _normalise_payload(data)
        self.data_type = data_type_of(self.data)
        queue_name = queue_type.value if isinstance(queue_type, QueueType) else str(queue_type)
        self.queue_type = queue_name.strip().lower()
        if not self.queue_type:
            raise QueuePayloadError("Queue item needs a queue type")
        if site_id is not None and (isinstance(site_id, bool) or not isinstance(site_id, int)):
            raise QueuePayloadError(f"site_id must be an integer, got {site_id!r}")
        self.site_id = site_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "dataType": self.data_type,
            "queueType": self.queue_type,
            "siteId": self.site_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), allow_nan=False)

    @classmethod
    def from_json(cls, text: str | bytes) -> QueueItem:
        try:
            raw = json.loads(text)
        except ValueError as e:
            raise QueuePayloadError(f"Stored queue item is not valid JSON: {e}", cause=e) from e
        if not isinstance(raw, dict) or "queueType" not in raw:
            raise QueuePayloadError("Stored queue item is missing its queueType")
        return cls(raw.get("data"), raw["queueType"], raw.get("siteId"))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueueItem):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"QueueItem(queue_type={self.queue_type!r}, site_id={self.site_id!r}, data_type={self.data_type!r})"


__all__ = ["QueueItem", "QueueType", "data_type_of"]
