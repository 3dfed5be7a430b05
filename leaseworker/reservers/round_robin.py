"""
Round robin reservation.
"""

from collections.abc import Sequence

from leaseworker.client import Job, Queue
from leaseworker.reservers.base import JobReserver


class RoundRobin(JobReserver):
    """
    Poll each queue once per call, starting after the last queue that
    yielded a job.

    The cursor only moves on a successful pop, so empty probes never skip a
    queue and every queue is probed within one call.
    """

    def __init__(self, queues: Sequence[Queue]):
        super().__init__(queues)
        self._last_popped_index = len(self.queues) - 1

    async def reserve(self) -> Job | None:
        count = len(self.queues)
        start = (self._last_popped_index + 1) % count
        for offset in range(count):
            index = (start + offset) % count
            job = await self._pop(self.queues[index])
            if job is not None:
                self._last_popped_index = index
                return job
        return None
