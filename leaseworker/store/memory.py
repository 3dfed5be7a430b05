"""
In-process job store.

Holds all job state in a dict owned by one event loop. Every operation runs
to completion without awaiting in between reads and writes, so each call is
atomic with respect to other coroutines on the same loop.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any
from uuid import uuid4

from leaseworker.constants import (
    BACKEND_CONFIG_DEFAULTS,
    CONFIG_GRACE_PERIOD,
    CONFIG_HEARTBEAT,
    DEFAULT_PRIORITY,
    DEFAULT_RETRIES,
    STALLED_FAILURE_GROUP,
    JobState,
)
from leaseworker.errors import BackendError, JobNotFoundError, LostLockError
from leaseworker.store.base import JobStore, as_state_set
from leaseworker.types.job import HistoryEvent, JobData, JobFailure

logger = logging.getLogger(__name__)


class MemoryJobStore(JobStore):
    """
    Job store kept in memory.

    Used by tests and by embedders that run producers and workers in the
    same process. The clock is injectable so lease expiry can be driven
    deterministically.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._jobs: dict[str, JobData] = {}
        self._config: dict[str, Any] = {**BACKEND_CONFIG_DEFAULTS, **(config or {})}
        self._clock = clock
        self._sequence = 0
        self._changed: asyncio.Condition | None = None

    async def put(
        self,
        queue: str,
        klass: str,
        payload: dict[str, Any],
        jid: str | None = None,
        priority: int = DEFAULT_PRIORITY,
        retries: int = DEFAULT_RETRIES,
        delay: float = 0,
    ) -> str:
        now = self._clock()
        jid = jid or uuid4().hex
        self._sequence += 1
        self._jobs[jid] = JobData(
            jid=jid,
            klass=klass,
            queue=queue,
            payload=dict(payload),
            priority=priority,
            retries=retries,
            retries_left=retries,
            state=JobState.SCHEDULED if delay > 0 else JobState.WAITING,
            available_at=now + delay if delay > 0 else None,
            created_at=now,
            sequence=self._sequence,
            history=[HistoryEvent(what="put", when=now, detail=queue)],
        )
        logger.debug("Put job", extra={"jid": jid, "queue": queue, "klass": klass})
        await self._notify()
        return jid

    async def pop(self, queue: str, worker: str) -> JobData | None:
        now = self._clock()
        job = self._reclaim_stalled(queue, worker, now)
        if job is None:
            self._promote_scheduled(queue, now)
            waiting = [
                j for j in self._jobs.values()
                if j.queue == queue and j.state == JobState.WAITING
            ]
            if waiting:
                job = min(waiting, key=lambda j: (-j.priority, j.sequence))
                self._lease(job, worker, now, "popped")
        await self._notify()
        return job.model_copy(deep=True) if job else None

    async def peek(self, queue: str, count: int = 1) -> list[JobData]:
        self._promote_scheduled(queue, self._clock())
        waiting = sorted(
            (
                j for j in self._jobs.values()
                if j.queue == queue and j.state == JobState.WAITING
            ),
            key=lambda j: (-j.priority, j.sequence),
        )
        return [j.model_copy(deep=True) for j in waiting[:count]]

    async def length(self, queue: str) -> int:
        active = {JobState.WAITING, JobState.SCHEDULED, JobState.RUNNING}
        return sum(
            1 for j in self._jobs.values() if j.queue == queue and j.state in active
        )

    async def get(self, jid: str) -> JobData | None:
        job = self._jobs.get(jid)
        return job.model_copy(deep=True) if job else None

    async def heartbeat(self, jid: str, token: str) -> float:
        job = self._require_lease(jid, token)
        now = self._clock()
        if job.expires_at is not None and job.expires_at + self._grace() <= now:
            raise LostLockError(jid, "lease expired")
        job.expires_at = now + float(self._config[CONFIG_HEARTBEAT])
        return job.expires_at

    async def complete(self, jid: str, token: str) -> None:
        job = self._require_lease(jid, token)
        now = self._clock()
        job.history.append(HistoryEvent(what="completed", when=now, worker=job.worker))
        job.state = JobState.COMPLETE
        self._release(job)
        await self._notify()

    async def fail(self, jid: str, token: str, group: str, message: str) -> None:
        job = self._require_lease(jid, token)
        self._fail(job, group, message, self._clock())
        await self._notify()

    async def retry(
        self,
        jid: str,
        token: str,
        delay: float = 0,
        group: str | None = None,
        message: str | None = None,
    ) -> JobState:
        job = self._require_lease(jid, token)
        now = self._clock()
        if job.retries_left <= 0:
            self._fail(
                job,
                group or STALLED_FAILURE_GROUP.format(queue=job.queue),
                message or f"Job exhausted retries in queue {job.queue}",
                now,
            )
        else:
            job.retries_left -= 1
            job.history.append(
                HistoryEvent(what="retried", when=now, worker=job.worker, detail=group)
            )
            if delay > 0:
                job.state = JobState.SCHEDULED
                job.available_at = now + delay
            else:
                job.state = JobState.WAITING
                job.available_at = None
            self._release(job)
        await self._notify()
        return job.state

    async def timeout(self, jid: str) -> None:
        job = self._jobs.get(jid)
        if job is None:
            raise JobNotFoundError(jid)
        if job.state != JobState.RUNNING:
            raise BackendError(f"Job {jid} is not running")
        now = self._clock()
        job.expires_at = now
        job.history.append(HistoryEvent(what="timed-out", when=now, worker=job.worker))
        logger.info("Timed out job", extra={"jid": jid, "worker": job.worker})
        await self._notify()

    async def lease_held(self, jid: str, token: str) -> bool:
        job = self._jobs.get(jid)
        if job is None or job.state != JobState.RUNNING or job.lease_token != token:
            return False
        return job.expires_at is None or job.expires_at + self._grace() > self._clock()

    async def get_config(self, key: str) -> Any:
        return self._config.get(key)

    async def set_config(self, key: str, value: Any) -> None:
        self._config[key] = value

    async def wait_for_state(
        self,
        jid: str,
        states: JobState | Iterable[JobState],
        timeout: float | None = None,
    ) -> JobData:
        wanted = as_state_set(states)
        changed = self._condition()

        def reached() -> bool:
            job = self._jobs.get(jid)
            return job is not None and job.state in wanted

        async with changed:
            await asyncio.wait_for(changed.wait_for(reached), timeout)
        return self._jobs[jid].model_copy(deep=True)

    def _grace(self) -> float:
        return float(self._config[CONFIG_GRACE_PERIOD])

    def _require_lease(self, jid: str, token: str) -> JobData:
        job = self._jobs.get(jid)
        if job is None:
            raise JobNotFoundError(jid)
        if job.state != JobState.RUNNING:
            raise LostLockError(jid, f"job is {job.state}")
        if job.lease_token != token:
            raise LostLockError(jid, "lease held by another worker")
        return job

    def _lease(self, job: JobData, worker: str, now: float, what: str) -> None:
        job.state = JobState.RUNNING
        job.worker = worker
        job.lease_token = uuid4().hex
        job.expires_at = now + float(self._config[CONFIG_HEARTBEAT])
        job.available_at = None
        job.history.append(HistoryEvent(what=what, when=now, worker=worker))

    def _release(self, job: JobData) -> None:
        job.worker = None
        job.lease_token = None
        job.expires_at = None

    def _fail(self, job: JobData, group: str, message: str, now: float) -> None:
        job.failure = JobFailure(group=group, message=message, when=now, worker=job.worker)
        job.history.append(
            HistoryEvent(what="failed", when=now, worker=job.worker, detail=group)
        )
        job.state = JobState.FAILED
        self._release(job)

    def _reclaim_stalled(self, queue: str, worker: str, now: float) -> JobData | None:
        grace = self._grace()
        stalled = sorted(
            (
                j for j in self._jobs.values()
                if j.queue == queue
                and j.state == JobState.RUNNING
                and j.expires_at is not None
                and j.expires_at + grace <= now
            ),
            key=lambda j: j.expires_at,
        )
        for job in stalled:
            if job.retries_left <= 0:
                logger.warning(
                    "Stalled job has no retries left",
                    extra={"jid": job.jid, "queue": queue},
                )
                self._fail(
                    job,
                    STALLED_FAILURE_GROUP.format(queue=queue),
                    f"Job exhausted retries in queue {queue}",
                    now,
                )
                continue
            job.retries_left -= 1
            logger.info(
                "Reclaiming stalled job",
                extra={"jid": job.jid, "previous_worker": job.worker, "worker": worker},
            )
            self._lease(job, worker, now, "reclaimed")
            return job
        return None

    def _promote_scheduled(self, queue: str, now: float) -> None:
        for job in self._jobs.values():
            if (
                job.queue == queue
                and job.state == JobState.SCHEDULED
                and job.available_at is not None
                and job.available_at <= now
            ):
                job.state = JobState.WAITING
                job.available_at = None

    def _condition(self) -> asyncio.Condition:
        if self._changed is None:
            self._changed = asyncio.Condition()
        return self._changed

    async def _notify(self) -> None:
        changed = self._condition()
        async with changed:
            changed.notify_all()
