"""
Lease watchdog for the job currently executing.

The backend can reclaim a job whose lease lapsed past the grace period. The
watchdog notices that and cancels the handler task, so the worker moves on
instead of reporting a result for an attempt that no longer owns the job.
Cancellation is cooperative: it lands at the handler's next await.
"""

import asyncio
import logging

from leaseworker.client import Job
from leaseworker.errors import BackendError

logger = logging.getLogger(__name__)


class LeaseWatchdog:
    """
    Async context manager scoped to one job attempt.

    The polling task starts on enter and is cancelled and awaited on exit,
    whatever way the attempt ends.
    """

    def __init__(self, job: Job, task: asyncio.Task, check_interval: float):
        """
        Args:
            job: The job handle, carrying the lease token it was popped with.
            task: The handler task to cancel when the lease is lost.
            check_interval: Seconds between lease checks.
        """
        self.job = job
        self.task = task
        self.check_interval = check_interval
        self.lease_lost = False
        self._watcher: asyncio.Task | None = None

    async def __aenter__(self) -> "LeaseWatchdog":
        self._watcher = asyncio.create_task(
            self._watch(), name=f"lease-watchdog-{self.job.jid}"
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is None:
            return
        watcher.cancel()
        # wait() does not raise the watcher's CancelledError, only our own
        await asyncio.wait([watcher])

    async def _watch(self) -> None:
        while not self.task.done():
            await asyncio.sleep(self.check_interval)
            if self.job.state_changed:
                # The attempt already recorded its result
                return
            try:
                held = await self.job.lease_held()
            except BackendError as e:
                logger.warning(
                    f"Could not check lease: {e}",
                    extra={"jid": self.job.jid},
                )
                continue
            if not held and not self.job.state_changed:
                self.lease_lost = True
                logger.warning(
                    "Lease lost while job was executing, cancelling handler",
                    extra={"jid": self.job.jid, "queue": self.job.queue_name},
                )
                self.task.cancel()
                return
