"""
Job repository for database operations.
Implements the lease protocol as compare-and-set updates on the jobs table.
"""

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leaseworker.constants import (
    BACKEND_CONFIG_DEFAULTS,
    CONFIG_GRACE_PERIOD,
    CONFIG_HEARTBEAT,
    STALLED_FAILURE_GROUP,
    JobState,
)
from leaseworker.db.models import ConfigRow, JobRow
from leaseworker.errors import BackendError, JobNotFoundError, LostLockError
from leaseworker.types.job import HistoryEvent, JobData, JobFailure

logger = logging.getLogger(__name__)

# How many candidates a pop inspects before giving up on a contended queue
_POP_ATTEMPTS = 5


def to_job_data(row: JobRow) -> JobData:
    """Convert a row into a detached snapshot."""
    return JobData.model_validate(row, from_attributes=True)


class JobRepository:
    """
    Repository for job database operations.

    Every state change is an UPDATE guarded by the state and lease token the
    caller observed, so a concurrent reclaim makes the guarded write match
    zero rows instead of overwriting the newer owner's state.
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], float] = time.time):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            clock: Source of epoch seconds.
        """
        self._session = session
        self._clock = clock

    async def create_job(
        self,
        queue: str,
        klass: str,
        payload: dict[str, Any],
        jid: str,
        priority: int,
        retries: int,
        delay: float,
    ) -> JobRow:
        """
        Insert a job, replacing any existing job with the same jid.

        Returns:
            The new JobRow.
        """
        now = self._clock()
        await self._session.execute(delete(JobRow).where(JobRow.jid == jid))
        row = JobRow(
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
            sequence=time.time_ns(),
            history=[_event("put", now, detail=queue)],
        )
        self._session.add(row)
        await self._session.flush()
        logger.debug("Put job", extra={"jid": jid, "queue": queue, "klass": klass})
        return row

    async def get_job(self, jid: str) -> JobRow | None:
        """Get a job by jid, bypassing any stale identity-map copy."""
        stmt = (
            select(JobRow)
            .where(JobRow.jid == jid)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_config(self, key: str) -> Any:
        row = await self._session.get(ConfigRow, key)
        if row is None:
            return BACKEND_CONFIG_DEFAULTS.get(key)
        return row.value

    async def set_config(self, key: str, value: Any) -> None:
        await self._session.merge(ConfigRow(key=key, value=value))
        await self._session.flush()

    async def ensure_config(self, defaults: dict[str, Any]) -> None:
        """Write config values that are not set yet, leaving existing ones alone."""
        for key, value in defaults.items():
            if await self._session.get(ConfigRow, key) is None:
                self._session.add(ConfigRow(key=key, value=value))
        await self._session.flush()

    async def acquire(self, queue: str, worker: str) -> JobRow | None:
        """
        Lease the next eligible job in a queue.

        Stalled jobs (lease lapsed past the grace period) are reclaimed first,
        then waiting jobs are taken by priority, FIFO within a priority.

        Args:
            queue: The queue name.
            worker: The worker identifier that will own the lease.

        Returns:
            The leased JobRow or None if nothing is available.
        """
        now = self._clock()
        grace = float(await self.get_config(CONFIG_GRACE_PERIOD))
        heartbeat = float(await self.get_config(CONFIG_HEARTBEAT))

        reclaimed = await self._reclaim_stalled(queue, worker, now, grace, heartbeat)
        if reclaimed is not None:
            return reclaimed

        await self._session.execute(
            update(JobRow)
            .where(
                JobRow.queue == queue,
                JobRow.state == JobState.SCHEDULED,
                JobRow.available_at <= now,
            )
            .values(state=JobState.WAITING, available_at=None)
            .execution_options(synchronize_session=False)
        )

        for _ in range(_POP_ATTEMPTS):
            stmt = (
                select(JobRow)
                .where(JobRow.queue == queue, JobRow.state == JobState.WAITING)
                .order_by(JobRow.priority.desc(), JobRow.sequence.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            row = (await self._session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            if await self._compare_and_set(
                row, **self._lease_values(row, worker, now, heartbeat, "popped")
            ):
                return await self.get_job(row.jid)
        logger.warning("Gave up popping from contended queue", extra={"queue": queue})
        return None

    async def heartbeat(self, jid: str, token: str) -> float:
        row = await self._require_lease(jid, token)
        now = self._clock()
        grace = float(await self.get_config(CONFIG_GRACE_PERIOD))
        if row.expires_at is not None and row.expires_at + grace <= now:
            raise LostLockError(jid, "lease expired")
        expires_at = now + float(await self.get_config(CONFIG_HEARTBEAT))
        await self._guarded(row, expires_at=expires_at)
        return expires_at

    async def complete(self, jid: str, token: str) -> None:
        row = await self._require_lease(jid, token)
        now = self._clock()
        await self._guarded(
            row,
            state=JobState.COMPLETE,
            history=[*row.history, _event("completed", now, worker=row.worker)],
            **_released(),
        )

    async def fail(self, jid: str, token: str, group: str, message: str) -> None:
        row = await self._require_lease(jid, token)
        await self._guarded(row, **self._failed_values(row, group, message, self._clock()))

    async def retry(
        self,
        jid: str,
        token: str,
        delay: float,
        group: str | None,
        message: str | None,
    ) -> JobState:
        row = await self._require_lease(jid, token)
        now = self._clock()
        if row.retries_left <= 0:
            await self._guarded(
                row,
                **self._failed_values(
                    row,
                    group or STALLED_FAILURE_GROUP.format(queue=row.queue),
                    message or f"Job exhausted retries in queue {row.queue}",
                    now,
                ),
            )
            return JobState.FAILED
        state = JobState.SCHEDULED if delay > 0 else JobState.WAITING
        await self._guarded(
            row,
            state=state,
            retries_left=row.retries_left - 1,
            available_at=now + delay if delay > 0 else None,
            history=[
                *row.history,
                _event("retried", now, worker=row.worker, detail=group),
            ],
            **_released(),
        )
        return state

    async def timeout(self, jid: str) -> None:
        row = await self.get_job(jid)
        if row is None:
            raise JobNotFoundError(jid)
        if row.state != JobState.RUNNING:
            raise BackendError(f"Job {jid} is not running")
        now = self._clock()
        await self._guarded(
            row,
            expires_at=now,
            history=[*row.history, _event("timed-out", now, worker=row.worker)],
        )
        logger.info("Timed out job", extra={"jid": jid, "worker": row.worker})

    async def lease_held(self, jid: str, token: str) -> bool:
        row = await self.get_job(jid)
        if row is None or row.state != JobState.RUNNING or row.lease_token != token:
            return False
        if row.expires_at is None:
            return True
        grace = float(await self.get_config(CONFIG_GRACE_PERIOD))
        return row.expires_at + grace > self._clock()

    async def peek(self, queue: str, count: int) -> Sequence[JobRow]:
        stmt = (
            select(JobRow)
            .where(JobRow.queue == queue, JobRow.state == JobState.WAITING)
            .order_by(JobRow.priority.desc(), JobRow.sequence.asc())
            .limit(count)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def length(self, queue: str) -> int:
        stmt = (
            select(func.count())
            .select_from(JobRow)
            .where(
                JobRow.queue == queue,
                JobRow.state.in_(
                    [JobState.WAITING, JobState.SCHEDULED, JobState.RUNNING]
                ),
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def _reclaim_stalled(
        self,
        queue: str,
        worker: str,
        now: float,
        grace: float,
        heartbeat: float,
    ) -> JobRow | None:
        stmt = (
            select(JobRow)
            .where(
                JobRow.queue == queue,
                JobRow.state == JobState.RUNNING,
                JobRow.expires_at <= now - grace,
            )
            .order_by(JobRow.expires_at.asc())
            .limit(_POP_ATTEMPTS)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        for row in (await self._session.execute(stmt)).scalars().all():
            if row.retries_left <= 0:
                logger.warning(
                    "Stalled job has no retries left",
                    extra={"jid": row.jid, "queue": queue},
                )
                await self._compare_and_set(
                    row,
                    **self._failed_values(
                        row,
                        STALLED_FAILURE_GROUP.format(queue=queue),
                        f"Job exhausted retries in queue {queue}",
                        now,
                    ),
                )
                continue
            values = self._lease_values(row, worker, now, heartbeat, "reclaimed")
            if await self._compare_and_set(
                row, retries_left=row.retries_left - 1, **values
            ):
                logger.info(
                    "Reclaimed stalled job",
                    extra={"jid": row.jid, "previous_worker": row.worker, "worker": worker},
                )
                return await self.get_job(row.jid)
        return None

    async def _require_lease(self, jid: str, token: str) -> JobRow:
        row = await self.get_job(jid)
        if row is None:
            raise JobNotFoundError(jid)
        if row.state != JobState.RUNNING:
            raise LostLockError(jid, f"job is {row.state}")
        if row.lease_token != token:
            raise LostLockError(jid, "lease held by another worker")
        return row

    async def _guarded(self, row: JobRow, **values: Any) -> None:
        if not await self._compare_and_set(row, **values):
            raise LostLockError(row.jid, "lease changed during update")

    async def _compare_and_set(self, row: JobRow, **values: Any) -> bool:
        token_matches = (
            JobRow.lease_token.is_(None)
            if row.lease_token is None
            else JobRow.lease_token == row.lease_token
        )
        stmt = (
            update(JobRow)
            .where(JobRow.jid == row.jid, JobRow.state == row.state, token_matches)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _lease_values(
        self,
        row: JobRow,
        worker: str,
        now: float,
        heartbeat: float,
        what: str,
    ) -> dict[str, Any]:
        return {
            "state": JobState.RUNNING,
            "worker": worker,
            "lease_token": uuid4().hex,
            "expires_at": now + heartbeat,
            "available_at": None,
            "history": [*row.history, _event(what, now, worker=worker)],
        }

    def _failed_values(
        self,
        row: JobRow,
        group: str,
        message: str,
        now: float,
    ) -> dict[str, Any]:
        failure = JobFailure(group=group, message=message, when=now, worker=row.worker)
        return {
            "state": JobState.FAILED,
            "failure": failure.model_dump(),
            "history": [
                *row.history,
                _event("failed", now, worker=row.worker, detail=group),
            ],
            **_released(),
        }


def _released() -> dict[str, Any]:
    return {"worker": None, "lease_token": None, "expires_at": None}


def _event(
    what: str,
    when: float,
    worker: str | None = None,
    detail: str | None = None,
) -> dict[str, Any]:
    return HistoryEvent(what=what, when=when, worker=worker, detail=detail).model_dump()
