"""
Job handler registry.

Jobs name their handler by a class reference string. The worker resolves it
through a registry first and falls back to importing a dotted path, so
`"myapp.jobs:SendEmail"` or `"myapp.jobs.send_email"` work without
registration.

Job handlers must be idempotent - they may be executed multiple times
for the same job when a lease lapses and the job is reclaimed.
"""

import importlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from leaseworker.client import Job
from leaseworker.errors import HandlerNotFoundError
from leaseworker.middleware.base import Middleware

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[Job], Awaitable[None]]


@dataclass(frozen=True)
class HandlerSpec:
    """A resolved handler and the middleware that belongs to it."""

    klass: str
    perform: JobHandler
    middleware: tuple[Middleware, ...] = field(default_factory=tuple)


class HandlerRegistry:
    """Maps job class references to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerSpec] = {}

    def register(
        self,
        klass: str,
        perform: JobHandler,
        middleware: Iterable[Middleware] = (),
    ) -> HandlerSpec:
        spec = HandlerSpec(klass=klass, perform=perform, middleware=tuple(middleware))
        self._handlers[klass] = spec
        logger.debug(f"Registered handler for job class: {klass}")
        return spec

    def handler(
        self,
        klass: str,
        middleware: Iterable[Middleware] = (),
    ) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a job handler.

        Example:
            @registry.handler("SendEmail", middleware=[RetryOnException(SMTPError)])
            async def send_email(job: Job) -> None:
                ...
        """

        def decorator(perform: JobHandler) -> JobHandler:
            self.register(klass, perform, middleware)
            return perform

        return decorator

    def get(self, klass: str) -> HandlerSpec | None:
        return self._handlers.get(klass)

    def list(self) -> list[str]:
        return list(self._handlers.keys())

    def resolve(self, klass: str) -> HandlerSpec:
        """
        Find the handler for a job class reference.

        Raises:
            HandlerNotFoundError: Nothing is registered and the reference does
                not import.
        """
        spec = self._handlers.get(klass)
        if spec is not None:
            return spec
        target = _import_reference(klass)
        if target is None:
            raise HandlerNotFoundError(klass)
        perform = getattr(target, "perform", target)
        if not callable(perform):
            raise HandlerNotFoundError(klass)
        return HandlerSpec(
            klass=klass,
            perform=perform,
            middleware=tuple(getattr(target, "middleware", ())),
        )


def _import_reference(reference: str) -> Any:
    if ":" in reference:
        module_name, _, attribute = reference.partition(":")
    else:
        module_name, _, attribute = reference.rpartition(".")
    if not module_name or not attribute:
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        logger.debug(f"Could not import module for job class: {reference}")
        return None
    target: Any = module
    for part in attribute.split("."):
        target = getattr(target, part, None)
        if target is None:
            return None
    return target


# Default registry
_registry = HandlerRegistry()


def get_registry() -> HandlerRegistry:
    """Get the process-wide default registry."""
    return _registry


def register_handler(
    klass: str,
    middleware: Iterable[Middleware] = (),
) -> Callable[[JobHandler], JobHandler]:
    """Decorator registering a handler in the default registry."""
    return _registry.handler(klass, middleware)


def get_handler(klass: str) -> HandlerSpec | None:
    """Get the handler registered for a job class, if any."""
    return _registry.get(klass)


def list_handlers() -> list[str]:
    """List all job classes in the default registry."""
    return _registry.list()
