"""
SQL job store.

Runs every backend call as one transaction through `JobRepository`, and
maps SQLAlchemy failures onto the worker's transient/terminal taxonomy.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from leaseworker.constants import (
    BACKEND_CONFIG_DEFAULTS,
    DEFAULT_PRIORITY,
    DEFAULT_RETRIES,
    JobState,
)
from leaseworker.db.connection import create_schema, create_session_factory
from leaseworker.db.repository import JobRepository, to_job_data
from leaseworker.errors import BackendUnavailableError, TransientBackendError
from leaseworker.store.base import JobStore, as_state_set
from leaseworker.types.job import JobData

logger = logging.getLogger(__name__)


class SQLJobStore(JobStore):
    """
    Job store backed by a SQL database through SQLAlchemy's asyncio API.

    Works on PostgreSQL (asyncpg, with FOR UPDATE SKIP LOCKED) and SQLite
    (aiosqlite, where the database serializes writers).
    """

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], float] = time.time,
        poll_interval: float = 0.05,
    ):
        """
        Args:
            engine: The async engine to run on. The store disposes it on close.
            clock: Source of epoch seconds.
            poll_interval: Seconds between checks in `wait_for_state`.
        """
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._clock = clock
        self._poll_interval = poll_interval

    async def init_schema(self, config_defaults: dict[str, Any] | None = None) -> None:
        """Create tables if needed and seed config values that are not set yet."""
        await create_schema(self._engine)
        async with self._repository() as repo:
            await repo.ensure_config({**BACKEND_CONFIG_DEFAULTS, **(config_defaults or {})})

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connection closed")

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[JobRepository]:
        """One transaction per store call; commits on success, rolls back on error."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield JobRepository(session, self._clock)
        except DBAPIError as e:
            if e.connection_invalidated:
                raise BackendUnavailableError(f"Database connection lost: {e}") from e
            raise TransientBackendError(f"Database error: {e}") from e
        except SQLAlchemyError as e:
            raise TransientBackendError(f"Database error: {e}") from e
        except OSError as e:
            raise BackendUnavailableError(f"Database unreachable: {e}") from e

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
        jid = jid or uuid4().hex
        async with self._repository() as repo:
            await repo.create_job(queue, klass, payload, jid, priority, retries, delay)
        return jid

    async def pop(self, queue: str, worker: str) -> JobData | None:
        async with self._repository() as repo:
            row = await repo.acquire(queue, worker)
            return to_job_data(row) if row is not None else None

    async def peek(self, queue: str, count: int = 1) -> list[JobData]:
        async with self._repository() as repo:
            return [to_job_data(row) for row in await repo.peek(queue, count)]

    async def length(self, queue: str) -> int:
        async with self._repository() as repo:
            return await repo.length(queue)

    async def get(self, jid: str) -> JobData | None:
        async with self._repository() as repo:
            row = await repo.get_job(jid)
            return to_job_data(row) if row is not None else None

    async def heartbeat(self, jid: str, token: str) -> float:
        async with self._repository() as repo:
            return await repo.heartbeat(jid, token)

    async def complete(self, jid: str, token: str) -> None:
        async with self._repository() as repo:
            await repo.complete(jid, token)

    async def fail(self, jid: str, token: str, group: str, message: str) -> None:
        async with self._repository() as repo:
            await repo.fail(jid, token, group, message)

    async def retry(
        self,
        jid: str,
        token: str,
        delay: float = 0,
        group: str | None = None,
        message: str | None = None,
    ) -> JobState:
        async with self._repository() as repo:
            return await repo.retry(jid, token, delay, group, message)

    async def timeout(self, jid: str) -> None:
        async with self._repository() as repo:
            await repo.timeout(jid)

    async def lease_held(self, jid: str, token: str) -> bool:
        async with self._repository() as repo:
            return await repo.lease_held(jid, token)

    async def get_config(self, key: str) -> Any:
        async with self._repository() as repo:
            return await repo.get_config(key)

    async def set_config(self, key: str, value: Any) -> None:
        async with self._repository() as repo:
            await repo.set_config(key, value)

    async def wait_for_state(
        self,
        jid: str,
        states: JobState | Iterable[JobState],
        timeout: float | None = None,
    ) -> JobData:
        wanted = as_state_set(states)

        async def poll() -> JobData:
            while True:
                job = await self.get(jid)
                if job is not None and job.state in wanted:
                    return job
                await asyncio.sleep(self._poll_interval)

        return await asyncio.wait_for(poll(), timeout)
