"""
Client-side handles over a job store.

`Client` groups queue, job and config access; `Job` is the handle a handler
receives, carrying the lease token it was popped with so every report it
sends is checked against the backend's current owner.
"""

import logging
from collections.abc import Iterable
from typing import Any

from leaseworker.constants import DEFAULT_PRIORITY, DEFAULT_RETRIES, JobState
from leaseworker.errors import BackendError
from leaseworker.store.base import JobStore
from leaseworker.types.job import JobData, JobFailure, LeaseInfo

logger = logging.getLogger(__name__)


class Job:
    """
    Handle on one reserved (or looked-up) job.

    Payload values are readable with item access: ``job["word"]``.
    """

    def __init__(self, store: JobStore, data: JobData):
        self._store = store
        self._data = data
        self._lease_token = data.lease_token
        self.state_changed = False

    @property
    def jid(self) -> str:
        return self._data.jid

    @property
    def klass(self) -> str:
        return self._data.klass

    @property
    def queue_name(self) -> str:
        return self._data.queue

    @property
    def payload(self) -> dict[str, Any]:
        return self._data.payload

    @property
    def priority(self) -> int:
        return self._data.priority

    @property
    def retries(self) -> int:
        return self._data.retries

    @property
    def retries_left(self) -> int:
        return self._data.retries_left

    @property
    def state(self) -> JobState:
        return self._data.state

    @property
    def worker(self) -> str | None:
        return self._data.worker

    @property
    def expires_at(self) -> float | None:
        return self._data.expires_at

    @property
    def failure(self) -> JobFailure | None:
        return self._data.failure

    @property
    def data(self) -> JobData:
        return self._data

    @property
    def lease(self) -> LeaseInfo | None:
        """The lease this handle was popped with, if any."""
        if self._lease_token is None or self._data.expires_at is None:
            return None
        return LeaseInfo(
            jid=self.jid,
            worker=self._data.worker or "",
            token=self._lease_token,
            expires_at=self._data.expires_at,
        )

    def __getitem__(self, key: str) -> Any:
        return self._data.payload[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.payload.get(key, default)

    async def refresh(self) -> "Job":
        """Reload the snapshot from the backend, keeping this handle's lease token."""
        data = await self._store.get(self.jid)
        if data is None:
            raise BackendError(f"Job {self.jid} no longer exists")
        self._data = data
        return self

    async def heartbeat(self) -> float:
        """Extend the lease. Raises LostLockError if it is gone."""
        expires_at = await self._store.heartbeat(self.jid, self._token())
        self._data.expires_at = expires_at
        logger.debug("Extended lease", extra={"jid": self.jid, "expires_at": expires_at})
        return expires_at

    async def complete(self) -> None:
        await self._store.complete(self.jid, self._token())
        self._note_state(JobState.COMPLETE)

    async def fail(self, group: str, message: str) -> None:
        await self._store.fail(self.jid, self._token(), group, message)
        self._note_state(JobState.FAILED)

    async def retry(
        self,
        delay: float = 0,
        group: str | None = None,
        message: str | None = None,
    ) -> JobState:
        """Requeue with one fewer retry left; fails the job when none remain."""
        state = await self._store.retry(self.jid, self._token(), delay, group, message)
        if state != JobState.FAILED:
            self._data.retries_left = max(0, self._data.retries_left - 1)
        self._note_state(state)
        return state

    async def timeout(self) -> None:
        """Force the current lease to expire (administrative)."""
        await self._store.timeout(self.jid)

    async def lease_held(self) -> bool:
        """Whether this handle's lease is still the live one."""
        if self._lease_token is None:
            return False
        return await self._store.lease_held(self.jid, self._lease_token)

    def _token(self) -> str:
        # Handles looked up by jid carry the current token, which lets
        # operators report on behalf of whoever holds the job.
        return self._lease_token or ""

    def _note_state(self, state: JobState) -> None:
        self.state_changed = True
        self._data.state = state

    def __repr__(self) -> str:
        return f"<Job {self.klass} ({self.jid} / {self.queue_name} / {self.state})>"


class Queue:
    """A named queue in the backend."""

    def __init__(self, name: str, store: JobStore, worker_name: str):
        self.name = name
        self._store = store
        self.worker_name = worker_name

    async def put(
        self,
        klass: str,
        payload: dict[str, Any],
        *,
        priority: int = DEFAULT_PRIORITY,
        jid: str | None = None,
        retries: int = DEFAULT_RETRIES,
        delay: float = 0,
    ) -> str:
        """Enqueue a job and return its jid."""
        return await self._store.put(
            self.name,
            klass,
            payload,
            jid=jid,
            priority=priority,
            retries=retries,
            delay=delay,
        )

    async def pop(self) -> Job | None:
        """Reserve the next eligible job, or None."""
        data = await self._store.pop(self.name, self.worker_name)
        return Job(self._store, data) if data is not None else None

    async def peek(self, count: int = 1) -> list[Job]:
        return [Job(self._store, data) for data in await self._store.peek(self.name, count)]

    async def length(self) -> int:
        return await self._store.length(self.name)

    def __repr__(self) -> str:
        return f"<Queue {self.name}>"


class Queues:
    def __init__(self, client: "Client"):
        self._client = client

    def __getitem__(self, name: str) -> Queue:
        return Queue(name, self._client.store, self._client.worker_name)


class Jobs:
    def __init__(self, client: "Client"):
        self._client = client

    async def get(self, jid: str) -> Job | None:
        data = await self._client.store.get(jid)
        return Job(self._client.store, data) if data is not None else None

    async def wait_for_state(
        self,
        jid: str,
        states: JobState | Iterable[JobState],
        timeout: float | None = None,
    ) -> Job:
        """Wait until a job reaches one of `states`."""
        data = await self._client.store.wait_for_state(jid, states, timeout)
        return Job(self._client.store, data)


class Config:
    def __init__(self, client: "Client"):
        self._client = client

    async def get(self, key: str) -> Any:
        return await self._client.store.get_config(key)

    async def set(self, key: str, value: Any) -> None:
        await self._client.store.set_config(key, value)


class Client:
    """Entry point for producers, operators and workers."""

    def __init__(self, store: JobStore, worker_name: str = "client"):
        self.store = store
        self.worker_name = worker_name
        self.queues = Queues(self)
        self.jobs = Jobs(self)
        self.config = Config(self)

    async def close(self) -> None:
        await self.store.close()
