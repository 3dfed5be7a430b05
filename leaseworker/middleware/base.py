"""
Middleware base class and chain.

A middleware is an interceptor around one job attempt. Chains are plain
ordered tuples: the first middleware registered is the outermost, so its
`before` runs first and its `after` runs last.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator

from leaseworker.client import Job

logger = logging.getLogger(__name__)

NextCall = Callable[[], Awaitable[None]]
Perform = Callable[[Job], Awaitable[None]]


class Middleware:
    """
    Interceptor with optional hooks. Every hook defaults to a pass-through.

    - `before(job)`: runs on the way in, outer layers first.
    - `around(job, call_next)`: wraps the rest of the chain; not awaiting
      `call_next` short-circuits it.
    - `after(job)`: runs on the way out, inner layers first, only when the
      inner call returned normally or the failure was handled.
    - `on_failure(job, exc)`: sees exceptions from inner layers and the
      handler; returning True marks the failure handled.

    An exception raised by any hook is a job failure like a handler error.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    async def before(self, job: Job) -> None:
        pass

    async def around(self, job: Job, call_next: NextCall) -> None:
        await call_next()

    async def after(self, job: Job) -> None:
        pass

    async def on_failure(self, job: Job, exc: Exception) -> bool:
        return False

    def __repr__(self) -> str:
        return f"<{self.name}>"


class MiddlewareChain:
    """Immutable ordered set of middleware wrapping a handler call."""

    def __init__(self, middlewares: Iterable[Middleware] = ()):
        self._middlewares: tuple[Middleware, ...] = tuple(middlewares)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    @property
    def names(self) -> list[str]:
        return [middleware.name for middleware in self._middlewares]

    def extend(self, middlewares: Iterable[Middleware]) -> "MiddlewareChain":
        """Return a new chain with `middlewares` nested inside this one."""
        return MiddlewareChain((*self._middlewares, *middlewares))

    async def invoke(self, job: Job, perform: Perform) -> None:
        """Run `perform(job)` wrapped by every layer."""
        await self._call(0, job, perform)

    async def _call(self, index: int, job: Job, perform: Perform) -> None:
        if index == len(self._middlewares):
            await perform(job)
            return

        layer = self._middlewares[index]

        async def call_next() -> None:
            await self._call(index + 1, job, perform)

        await layer.before(job)
        try:
            await layer.around(job, call_next)
        except Exception as exc:
            if not await layer.on_failure(job, exc):
                raise
            logger.debug(
                f"Failure handled by {layer.name}",
                extra={"jid": job.jid, "error": type(exc).__name__},
            )
        await layer.after(job)
