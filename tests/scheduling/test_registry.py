"""Tests for TaskRegistry lookup, registration and package discovery."""

import sys
import textwrap

import pytest

from sentinel.core.errors import InvalidTaskType, TaskRegistryError
from sentinel.scheduling import AbstractCallback, Status, TaskRegistry, as_task
from sentinel.scheduling.callback import task_meta


@as_task("Greeting", "Says hello")
class Greeting(AbstractCallback):
    def invoke(self, task, storage):
        return Status.OK


class TestLookup:
    def test_get_registered_handler(self, registry, make_handler):
        handler = make_handler("mail.send")
        registry.add("mail.send", handler)
        assert registry.get("mail.send") is handler

    def test_types_are_case_insensitive(self, registry, make_handler):
        handler = make_handler("mail.send")
        registry.add("Mail.Send", handler)
        assert registry.get("MAIL.SEND") is handler
        assert registry.has("mail.send")

    def test_unknown_type_raises(self, registry):
        with pytest.raises(InvalidTaskType, match="no-such-task"):
            registry.get("no-such-task")

    def test_empty_type_raises(self, registry):
        with pytest.raises(InvalidTaskType, match="Empty task type"):
            registry.get("")
        assert not registry.has("")

    def test_remove_is_noop_when_absent(self, registry, make_handler):
        registry.add("a", make_handler("a"))
        registry.remove("a")
        registry.remove("a")
        assert not registry.has("a")

    def test_add_without_type_raises(self, registry, make_handler):
        with pytest.raises(TaskRegistryError):
            registry.add("  ", make_handler())

    def test_list_types_sorted(self, registry, make_handler):
        registry.add("zeta", make_handler("zeta", description="Z"))
        registry.add("alpha", make_handler("alpha", description="A"))
        assert registry.list_types() == [("alpha", "A"), ("zeta", "Z")]

    def test_handlers_passed_to_constructor(self, context, make_handler):
        handler = make_handler("x")
        registry = TaskRegistry(context, handlers={"x": handler}, auto_populate=False)
        assert registry.get("x") is handler


class TestAddFromClass:
    def test_uses_decorator_metadata(self, registry):
        handler = registry.add_from_class(Greeting)
        assert registry.get("greeting") is handler
        assert handler.task_type() == "greeting"
        assert handler.description() == "Says hello"
        assert handler.context is registry.context

    def test_subclass_does_not_inherit_registration(self):
        class LoudGreeting(Greeting):
            pass

        assert task_meta(Greeting) == ("greeting", "Says hello")
        assert task_meta(LoudGreeting) is None

    def test_non_handler_class_rejected(self, registry):
        class NotAHandler:
            def __init__(self, context):
                pass

        with pytest.raises(TaskRegistryError):
            registry.add_from_class(NotAHandler)

    def test_constructor_failure_wrapped(self, registry):
        class Broken(AbstractCallback):
            def __init__(self, context):
                raise RuntimeError("boom")

        with pytest.raises(TaskRegistryError, match="boom"):
            registry.add_from_class(Broken)


class TestDiscovery:
    def test_default_package_provides_logrotate(self, context):
        registry = TaskRegistry(context)
        assert registry.has("logrotate")
        assert ("logrotate", registry.get("logrotate").description()) in registry.list_types()

    def test_scans_custom_package(self, context, tmp_path, monkeypatch):
        package = tmp_path / "acme_handlers"
        package.mkdir()
        (package / "__init__.py").write_text("")
        (package / "mail.py").write_text(
            textwrap.dedent(
                """
                from sentinel.scheduling import AbstractCallback, Status, as_task

                @as_task("acme.mail", "Send mail")
                class SendMail(AbstractCallback):
                    def invoke(self, task, storage):
                        return Status.OK

                class Helper:
                    pass
                """
            )
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        monkeypatch.delitem(sys.modules, "acme_handlers", raising=False)

        registry = TaskRegistry(context, packages=["acme_handlers"])

        assert [t for t, _ in registry.list_types()] == ["acme.mail"]

    def test_missing_package_raises(self, context):
        registry = TaskRegistry(context, packages=["no_such_handler_package_xyz"])
        with pytest.raises(TaskRegistryError):
            registry.get("anything")

    def test_explicit_handlers_skip_scan(self, context, make_handler):
        registry = TaskRegistry(context, handlers={"only": make_handler("only")})
        assert [t for t, _ in registry.list_types()] == ["only"]
