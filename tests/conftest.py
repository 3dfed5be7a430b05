"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio

from leaseworker.client import Client, Queue
from leaseworker.constants import CONFIG_GRACE_PERIOD, CONFIG_HEARTBEAT
from leaseworker.db.connection import drop_schema, get_test_engine
from leaseworker.middleware.base import Middleware
from leaseworker.reservers import Ordered
from leaseworker.store import MemoryJobStore, SQLJobStore
from leaseworker.worker.handlers import HandlerRegistry
from leaseworker.worker.serial import SerialWorker

# Set TEST_DATABASE_URL to run the SQL store tests against PostgreSQL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryJobStore:
    """In-memory store on the real clock."""
    return MemoryJobStore()


@pytest.fixture
def client(store: MemoryJobStore) -> Client:
    """Client acting as producer and operator."""
    return Client(store, worker_name="client")


@pytest.fixture
def queue(client: Client) -> Queue:
    return client.queues["foo"]


@pytest.fixture
def words() -> asyncio.Queue:
    """Channel handlers report what they saw through."""
    return asyncio.Queue()


@pytest.fixture
def registry() -> HandlerRegistry:
    """A fresh registry so tests never share handlers."""
    return HandlerRegistry()


@pytest.fixture
def make_worker(
    store: MemoryJobStore,
    registry: HandlerRegistry,
) -> Callable[..., SerialWorker]:
    """
    Factory for workers polling the "foo" queue under their own name.

    Defaults are tuned for tests: no startup jitter, short poll interval,
    fast lease checks.
    """

    def factory(
        *,
        queues: tuple[str, ...] = ("foo",),
        middleware: tuple[Middleware, ...] = (),
        interval: float = 0.01,
        lock_check_interval: float = 0.01,
        worker_name: str = "worker-1",
    ) -> SerialWorker:
        worker_client = Client(store, worker_name=worker_name)
        reserver = Ordered([worker_client.queues[name] for name in queues])
        return SerialWorker(
            reserver,
            interval=interval,
            max_startup_interval=0,
            middleware=middleware,
            registry=registry,
            lock_check_interval=lock_check_interval,
        )

    return factory


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path) -> AsyncGenerator[SQLJobStore]:
    """
    SQL store on a fresh schema.

    Uses a temporary SQLite file unless TEST_DATABASE_URL points elsewhere.
    """
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    engine = get_test_engine(url)
    await drop_schema(engine)
    store = SQLJobStore(engine, poll_interval=0.01)
    await store.init_schema({CONFIG_HEARTBEAT: 60, CONFIG_GRACE_PERIOD: 10})

    yield store

    await drop_schema(engine)
    await store.close()
