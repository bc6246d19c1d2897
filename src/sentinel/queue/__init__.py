"""Persistent work queue.

Tags:
    sentinel, queue, work-queue, persistence

Doc-Types:
    package-overview
"""

from sentinel.queue.item import QueueItem, QueueType
from sentinel.queue.sql_queue import QueueFactory, SqlQueue

__all__ = ["QueueItem", "QueueType", "SqlQueue", "QueueFactory"]
