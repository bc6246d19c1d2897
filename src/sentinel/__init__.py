"""
Sentinel - cron-driven task scheduler and persistent work queue.

Subpackages:
- sentinel.core: errors, logging, settings, database access, migrations
- sentinel.scheduling: task table, runner, handler registry
- sentinel.queue: persistent work queue
- sentinel.tasks: built-in task handlers
- sentinel.cli / sentinel.api: entry points
"""

__version__ = "0.1.0"
