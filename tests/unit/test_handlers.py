"""
Unit tests for the job handler registry.
"""

import json
import sys
import types

import pytest

from leaseworker.errors import HandlerNotFoundError
from leaseworker.middleware import RetryOnException
from leaseworker.worker.handlers import (
    HandlerRegistry,
    get_handler,
    get_registry,
    list_handlers,
    register_handler,
)


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_register_and_get(self, registry: HandlerRegistry):
        """Test registering a handler through the decorator."""

        @registry.handler("SendEmail")
        async def send_email(job):
            pass

        spec = registry.get("SendEmail")

        assert spec is not None
        assert spec.klass == "SendEmail"
        assert spec.perform is send_email
        assert spec.middleware == ()

    def test_get_handler_not_exists(self, registry: HandlerRegistry):
        """Test getting a non-existent handler."""
        assert registry.get("nonexistent") is None

    def test_list_handlers(self, registry: HandlerRegistry):
        """Test listing registered handlers."""
        registry.register("a", lambda job: None)
        registry.register("b", lambda job: None)

        assert registry.list() == ["a", "b"]

    def test_register_with_middleware(self, registry: HandlerRegistry):
        """Test that per-handler middleware is kept in order."""
        retry = RetryOnException(TimeoutError)

        @registry.handler("Flaky", middleware=[retry])
        async def flaky(job):
            pass

        assert registry.resolve("Flaky").middleware == (retry,)

    def test_resolve_prefers_registry(self, registry: HandlerRegistry):
        """Test that a registered name shadows an importable path."""

        async def perform(job):
            pass

        registry.register("json.dumps", perform)

        assert registry.resolve("json.dumps").perform is perform

    def test_resolve_dotted_path(self, registry: HandlerRegistry):
        """Test resolving module.attribute and module:attribute references."""
        assert registry.resolve("json.dumps").perform is json.dumps
        assert registry.resolve("json:dumps").perform is json.dumps

    def test_resolve_class_with_perform(self, registry: HandlerRegistry, monkeypatch):
        """Test that a target's perform and middleware attributes are used."""
        retry = RetryOnException("OSError")

        class Resize:
            middleware = [retry]

            @staticmethod
            async def perform(job):
                pass

        module = types.ModuleType("fake_jobs")
        module.Resize = Resize
        monkeypatch.setitem(sys.modules, "fake_jobs", module)

        spec = registry.resolve("fake_jobs:Resize")

        assert spec.perform is Resize.perform
        assert spec.middleware == (retry,)

    @pytest.mark.parametrize(
        "klass",
        ["Unknown", "no_such_module.Job", "json.no_such_function", "json:"],
    )
    def test_resolve_not_found(self, registry: HandlerRegistry, klass: str):
        """Test that unresolvable references raise HandlerNotFoundError."""
        with pytest.raises(HandlerNotFoundError) as exc_info:
            registry.resolve(klass)

        assert exc_info.value.klass == klass


class TestDefaultRegistry:
    """Tests for the process-wide registry helpers."""

    def test_register_handler(self):
        """Test that the module-level decorator fills the default registry."""
        @register_handler("tests.DefaultRegistryJob")
        async def perform(job):
            pass

        assert get_handler("tests.DefaultRegistryJob").perform is perform
        assert "tests.DefaultRegistryJob" in list_handlers()
        assert get_registry().resolve("tests.DefaultRegistryJob").perform is perform
