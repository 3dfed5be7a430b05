"""
Retry-on-exception middleware.

Exceptions are classified by kind: the exception's class plus every ancestor
class, each named both by qualified name and by module path. A failure is
retryable when any of its kinds is in the configured set.
"""

import logging
from collections.abc import Callable

from leaseworker.client import Job
from leaseworker.errors import failure_details
from leaseworker.middleware.base import Middleware

logger = logging.getLogger(__name__)

ErrorKind = type[BaseException] | str
Backoff = Callable[[int], float]


def kind_names(kind: type[BaseException]) -> tuple[str, str]:
    return kind.__qualname__, f"{kind.__module__}.{kind.__qualname__}"


def error_kinds(exc: BaseException) -> frozenset[str]:
    """Kind names for an exception and all of its ancestors."""
    names: set[str] = set()
    for kind in type(exc).__mro__:
        if kind is object:
            continue
        names.update(kind_names(kind))
    return frozenset(names)


def exponential_backoff(
    base: float = 1.0,
    factor: float = 2.0,
    maximum: float | None = None,
) -> Backoff:
    """
    Delay schedule `base * factor ** (attempt - 1)`, optionally capped.

    Example:
        RetryOnException(TimeoutError, backoff=exponential_backoff(5, maximum=300))
    """

    def delay(attempt: int) -> float:
        value = base * factor ** max(attempt - 1, 0)
        return min(value, maximum) if maximum is not None else value

    return delay


class RetryOnException(Middleware):
    """
    Turn retryable failures into retries until the job runs out of them.

    Non-retryable failures propagate unchanged. A retryable failure is never
    re-raised: the job is requeued with one fewer retry left, or failed for
    good once `retries_left` is zero. The decision depends only on the
    exception's kinds and the job's retries left.
    """

    def __init__(
        self,
        *kinds: ErrorKind,
        delay: float = 0,
        backoff: Backoff | None = None,
    ):
        if not kinds:
            raise ValueError("RetryOnException needs at least one exception kind")
        self._kinds = frozenset(
            kind if isinstance(kind, str) else kind_names(kind)[1] for kind in kinds
        )
        self._delay = delay
        self._backoff = backoff

    @property
    def kinds(self) -> frozenset[str]:
        return self._kinds

    def is_retryable(self, exc: BaseException) -> bool:
        return not self._kinds.isdisjoint(error_kinds(exc))

    def retry_delay(self, job: Job) -> float:
        if self._backoff is None:
            return self._delay
        attempt = job.retries - job.retries_left + 1
        return self._backoff(attempt)

    async def on_failure(self, job: Job, exc: Exception) -> bool:
        if not self.is_retryable(exc):
            return False

        group, message = failure_details(exc)
        if job.retries_left <= 0:
            logger.warning(
                "Retryable failure with no retries left, failing job",
                extra={"jid": job.jid, "group": group},
            )
            await job.fail(group, message)
            return True

        delay = self.retry_delay(job)
        logger.info(
            "Retrying job after retryable failure",
            extra={
                "jid": job.jid,
                "group": group,
                "retries_left": job.retries_left - 1,
                "delay": delay,
            },
        )
        await job.retry(delay, group, message)
        return True
