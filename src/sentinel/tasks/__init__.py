"""Built-in task handlers.

Every module in this package is imported by the default
:class:`~sentinel.scheduling.registry.TaskRegistry` scan; classes decorated
with :func:`~sentinel.scheduling.callback.as_task` become task types.
"""
