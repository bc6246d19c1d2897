"""Task Registry: injectable task type → handler lookup.

Manifesto:
The runner needs to resolve a task row's ``type`` (``"logrotate"``) to a
handler object.  The registry decouples discovery (scanning the handler
packages for :func:`~sentinel.scheduling.callback.as_task` classes) from
resolution (at claim time), and is always passed explicitly so tests can
build isolated registries.

ARCHITECTURE
────────────
::

    TaskRegistry(context, handlers=None, auto_populate=True)
      ├── .get(type)            ─ lookup, InvalidTaskType when unknown
      ├── .has(type)            ─ existence check
      ├── .add(type, handler)   ─ store handler
      ├── .add_from_class(cls)  ─ instantiate with the TaskContext, store
      ├── .remove(type)         ─ drop handler (no-op when absent)
      └── .list_types()         ─ (type, description) for reporting

    Types are case-insensitive.  The first lookup on an empty
    auto-populating registry imports every module of the handler
    packages (default ``sentinel.tasks``) and registers the decorated
    classes found there.

Tags:
    sentinel, scheduling, registry, handler-registry, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
import inspect
import pkgutil
from collections.abc import Iterable

from sentinel.core.errors import InvalidTaskType, TaskRegistryError
from sentinel.core.logging import get_logger
from sentinel.scheduling.callback import TaskCallback, TaskContext, task_meta

logger = get_logger(__name__)

DEFAULT_HANDLER_PACKAGES = ("sentinel.tasks",)


def _normalise(task_type: str | None) -> str:
    return (task_type or "").strip().lower()


class TaskRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = TaskRegistry(context, auto_populate=False)
        >>> registry.add("noop", NoopHandler())
        >>> registry.get("NOOP")
        <NoopHandler ...>
    """

    def __init__(
        self,
        context: TaskContext,
        handlers: dict[str, TaskCallback] | None = None,
        auto_populate: bool = True,
        packages: Iterable[str] | None = None,
    ) -> None:
        self.context = context
        self._handlers: dict[str, TaskCallback] = {}
        self._auto_populate = auto_populate
        self._populated = False
        if packages is None:
            packages = context.settings.handler_packages or DEFAULT_HANDLER_PACKAGES
        self._packages = tuple(packages)
        for task_type, handler in (handlers or {}).items():
            self.add(task_type, handler)

    # -- lookup ------------------------------------------------------------

    def get(self, task_type: str | None) -> TaskCallback:
        """Get the handler for a task type.

        Raises:
            InvalidTaskType: If the type is empty or nothing handles it.
        """
        key = _normalise(task_type)
        if not key:
            raise InvalidTaskType(task_type)
        self._ensure_populated()
        try:
            return self._handlers[key]
        except KeyError:
            raise InvalidTaskType(task_type) from None

    def has(self, task_type: str | None) -> bool:
        key = _normalise(task_type)
        if not key:
            return False
        self._ensure_populated()
        return key in self._handlers

    def list_types(self) -> list[tuple[str, str]]:
        """Registered ``(type, description)`` pairs, sorted by type."""
        self._ensure_populated()
        return sorted(
            (task_type, handler.description()) for task_type, handler in self._handlers.items()
        )

    # -- mutation ----------------------------------------------------------

    def add(self, task_type: str | None, handler: TaskCallback) -> None:
        """Register a handler (replaces an existing one for the same type)."""
        key = _normalise(task_type)
        if not key:
            raise TaskRegistryError("Cannot register a handler without a task type")
        self._handlers[key] = handler

    def remove(self, task_type: str | None) -> None:
        self._ensure_populated()
        self._handlers.pop(_normalise(task_type), None)

    def add_from_class(self, cls: type) -> TaskCallback:
        """Instantiate a handler class with the registry's context and register it."""
        try:
            handler = cls(self.context)
        except Exception as e:
            raise TaskRegistryError(f"Cannot create handler {cls.__qualname__}: {e}", cause=e) from e

        if not isinstance(handler, TaskCallback):
            raise TaskRegistryError(
                f"{cls.__qualname__} does not implement invoke(), task_type() and description()"
            )

        meta = task_meta(cls)
        task_type = meta[0] if meta else handler.task_type()
        self.add(task_type, handler)
        return handler

    # -- discovery ---------------------------------------------------------

    def _ensure_populated(self) -> None:
        if self._populated or not self._auto_populate or self._handlers:
            return
        self._populated = True
        for package in self._packages:
            self._scan_package(package)
        logger.debug("registry.populated", types=sorted(self._handlers))

    def _scan_package(self, package_name: str) -> None:
        try:
            package = importlib.import_module(package_name)
        except Exception as e:
            raise TaskRegistryError(f"Cannot import handler package {package_name}: {e}", cause=e) from e

        module_names = [package_name]
        if hasattr(package, "__path__"):
            module_names += [
                info.name for info in pkgutil.iter_modules(package.__path__, prefix=f"{package_name}.")
            ]

        for module_name in module_names:
            try:
                module = importlib.import_module(module_name)
            except Exception as e:
                raise TaskRegistryError(f"Cannot import handler module {module_name}: {e}", cause=e) from e

            for _, cls in inspect.getmembers(module, inspect.isclass):
                if cls.__module__ != module.__name__ or task_meta(cls) is None:
                    continue
                handler = self.add_from_class(cls)
                logger.debug("registry.handler_added", task_type=handler.task_type(), module=module_name)


__all__ = ["TaskRegistry", "DEFAULT_HANDLER_PACKAGES"]
