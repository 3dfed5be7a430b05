"""
Ordered reservation: strict queue precedence.
"""

from leaseworker.client import Job
from leaseworker.reservers.base import JobReserver


class Ordered(JobReserver):
    """Always poll queues in the given order; earlier queues win."""

    async def reserve(self) -> Job | None:
        for queue in self.queues:
            job = await self._pop(queue)
            if job is not None:
                return job
        return None
