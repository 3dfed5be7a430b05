"""
Job reserver base class.

A reserver decides which queue to poll next. It owns no jobs; it only
remembers where its rotation stands.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from leaseworker.client import Job, Queue
from leaseworker.errors import TransientBackendError
from leaseworker.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class JobReserver(ABC):
    """Strategy returning the next available job across a set of queues."""

    def __init__(self, queues: Sequence[Queue]):
        if not queues:
            raise ValueError("A reserver needs at least one queue")
        self.queues: tuple[Queue, ...] = tuple(queues)

    @abstractmethod
    async def reserve(self) -> Job | None:
        """Return the next available job, or None if every queue is empty."""

    @property
    def description(self) -> str:
        names = ", ".join(queue.name for queue in self.queues)
        return f"{names} ({type(self).__name__})"

    @property
    def worker_name(self) -> str:
        return self.queues[0].worker_name

    async def _pop(self, queue: Queue) -> Job | None:
        """
        Pop from one queue.

        A transient backend error counts as "no job from this queue" for this
        cycle. Anything else propagates to the worker.
        """
        try:
            return await queue.pop()
        except TransientBackendError as e:
            logger.warning(
                f"Transient error polling queue {queue.name}: {e}",
                extra={"queue": queue.name},
            )
            get_metrics().record_reservation_error(queue.name)
            return None
