"""
Backend protocol consumed by the worker.

A job store is the authoritative owner of job state: it hands out leases,
accepts or rejects reports, and reclaims jobs whose leases lapsed. Every
mutating call is atomic from the caller's point of view.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from leaseworker.constants import (
    DEFAULT_PRIORITY,
    DEFAULT_RETRIES,
    JobState,
)
from leaseworker.types.job import JobData


class JobStore(ABC):
    """Abstract job backend. See `MemoryJobStore` and `SQLJobStore`."""

    @abstractmethod
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
        """Enqueue a job and return its jid. Re-putting a jid replaces the job."""

    @abstractmethod
    async def pop(self, queue: str, worker: str) -> JobData | None:
        """
        Reserve the next eligible job from a queue.

        Jobs whose lease lapsed past the grace period are reclaimed first,
        then waiting jobs by priority (FIFO within a priority). The returned
        snapshot carries a fresh lease token.
        """

    @abstractmethod
    async def peek(self, queue: str, count: int = 1) -> list[JobData]:
        """Look at the next waiting jobs without reserving them."""

    @abstractmethod
    async def length(self, queue: str) -> int:
        """Number of waiting, scheduled and running jobs in a queue."""

    @abstractmethod
    async def get(self, jid: str) -> JobData | None:
        """Fetch a job snapshot, or None if it does not exist."""

    @abstractmethod
    async def heartbeat(self, jid: str, token: str) -> float:
        """Extend a lease. Returns the new deadline or raises LostLockError."""

    @abstractmethod
    async def complete(self, jid: str, token: str) -> None:
        """Mark a job complete. Raises LostLockError if the lease is gone."""

    @abstractmethod
    async def fail(self, jid: str, token: str, group: str, message: str) -> None:
        """Mark a job failed. Raises LostLockError if the lease is gone."""

    @abstractmethod
    async def retry(
        self,
        jid: str,
        token: str,
        delay: float = 0,
        group: str | None = None,
        message: str | None = None,
    ) -> JobState:
        """
        Requeue a job and decrement its retries left.

        With no retries left the job fails instead. Returns the resulting
        state. Raises LostLockError if the lease is gone.
        """

    @abstractmethod
    async def timeout(self, jid: str) -> None:
        """Force-expire a running job's lease."""

    @abstractmethod
    async def lease_held(self, jid: str, token: str) -> bool:
        """Whether `token` is still the live lease on a running job."""

    @abstractmethod
    async def get_config(self, key: str) -> Any:
        """Read a backend config value."""

    @abstractmethod
    async def set_config(self, key: str, value: Any) -> None:
        """Write a backend config value."""

    @abstractmethod
    async def wait_for_state(
        self,
        jid: str,
        states: JobState | Iterable[JobState],
        timeout: float | None = None,
    ) -> JobData:
        """Wait until a job reaches one of `states` and return its snapshot."""

    async def close(self) -> None:
        """Release backend resources."""


def as_state_set(states: JobState | Iterable[JobState]) -> frozenset[JobState]:
    if isinstance(states, str):
        return frozenset({JobState(states)})
    return frozenset(JobState(state) for state in states)
