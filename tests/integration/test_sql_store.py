"""
Integration tests for the SQL job store.

Run against a temporary SQLite database by default; set TEST_DATABASE_URL to
a postgresql+asyncpg URL to run them against PostgreSQL.
"""

import asyncio

import pytest

from leaseworker.client import Client
from leaseworker.constants import CONFIG_GRACE_PERIOD, CONFIG_HEARTBEAT, JobState
from leaseworker.db import ConfigRow
from leaseworker.errors import BackendError, LostLockError
from leaseworker.reservers import Ordered
from leaseworker.store import SQLJobStore
from leaseworker.testing import run_jobs
from leaseworker.worker.handlers import HandlerRegistry
from leaseworker.worker.serial import SerialWorker


class TestSQLJobStore:
    """Tests for SQLJobStore."""

    @pytest.fixture
    def producer(self, sql_store: SQLJobStore) -> Client:
        return Client(sql_store, worker_name="producer")

    @pytest.fixture
    def worker_a(self, sql_store: SQLJobStore) -> Client:
        return Client(sql_store, worker_name="worker-a")

    @pytest.fixture
    def worker_b(self, sql_store: SQLJobStore) -> Client:
        return Client(sql_store, worker_name="worker-b")

    async def test_put_and_get(self, producer: Client):
        """Test that a put job is stored as waiting with its payload."""
        jid = await producer.queues["foo"].put(
            "JobClass", {"word": "foo", "n": [1, 2]}, retries=3
        )

        job = await producer.jobs.get(jid)

        assert job.state == JobState.WAITING
        assert job.payload == {"word": "foo", "n": [1, 2]}
        assert job.retries == 3
        assert job.retries_left == 3
        assert job.data.history[0].what == "put"
        assert await producer.jobs.get("missing") is None

    async def test_pop_leases_by_priority(self, producer: Client, worker_a: Client):
        """Test that pops take higher priority first, then oldest first."""
        queue = producer.queues["foo"]
        await queue.put("JobClass", {}, jid="low-1")
        await queue.put("JobClass", {}, jid="high", priority=10)
        await queue.put("JobClass", {}, jid="low-2")

        popped = [await worker_a.queues["foo"].pop() for _ in range(3)]

        assert [job.jid for job in popped] == ["high", "low-1", "low-2"]
        assert all(job.state == JobState.RUNNING for job in popped)
        assert all(job.worker == "worker-a" for job in popped)
        assert len({job.lease.token for job in popped}) == 3
        assert await worker_a.queues["foo"].pop() is None

    async def test_queues_are_separate(self, producer: Client, worker_a: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")

        assert await worker_a.queues["bar"].pop() is None
        assert await producer.queues["foo"].length() == 1
        assert await producer.queues["bar"].length() == 0

    async def test_peek_does_not_lease(self, producer: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")

        peeked = await producer.queues["foo"].peek()

        assert [job.jid for job in peeked] == ["jid"]
        assert (await producer.jobs.get("jid")).state == JobState.WAITING

    async def test_complete(self, producer: Client, worker_a: Client):
        """Test the full lifecycle: put -> pop -> complete."""
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        job = await worker_a.queues["foo"].pop()

        await job.complete()

        stored = await producer.jobs.get("jid")
        assert stored.state == JobState.COMPLETE
        assert stored.worker is None
        assert [event.what for event in stored.data.history] == [
            "put",
            "popped",
            "completed",
        ]
        with pytest.raises(LostLockError):
            await job.complete()

    async def test_fail(self, producer: Client, worker_a: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        job = await worker_a.queues["foo"].pop()

        await job.fail("ValueError", "ValueError: bad input")

        stored = await producer.jobs.get("jid")
        assert stored.state == JobState.FAILED
        assert stored.failure.group == "ValueError"
        assert stored.failure.worker == "worker-a"

    async def test_retry_until_failed(self, producer: Client, worker_a: Client):
        """Test that retries decrement and the last one fails the job."""
        await producer.queues["foo"].put("JobClass", {}, jid="jid", retries=1)

        job = await worker_a.queues["foo"].pop()
        assert await job.retry(group="Kaboom", message="first") == JobState.WAITING

        job = await worker_a.queues["foo"].pop()
        assert job.retries_left == 0
        assert await job.retry(group="Kaboom", message="second") == JobState.FAILED

        stored = await producer.jobs.get("jid")
        assert stored.state == JobState.FAILED
        assert stored.failure.message == "second"

    async def test_retry_with_delay_schedules(self, producer: Client, worker_a: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        job = await worker_a.queues["foo"].pop()

        assert await job.retry(delay=60) == JobState.SCHEDULED
        assert await worker_a.queues["foo"].pop() is None

    async def test_timeout_makes_job_reclaimable(
        self, producer: Client, worker_a: Client, worker_b: Client
    ):
        """Test that a forced expiry lets another worker take the job."""
        await producer.config.set(CONFIG_GRACE_PERIOD, 0)
        await producer.queues["foo"].put("JobClass", {}, jid="jid", retries=2)
        first = await worker_a.queues["foo"].pop()

        await first.timeout()
        assert (await producer.jobs.get("jid")).state == JobState.RUNNING
        second = await worker_b.queues["foo"].pop()

        assert second.jid == "jid"
        assert second.worker == "worker-b"
        assert second.retries_left == 1
        assert await first.lease_held() is False
        assert await second.lease_held() is True
        with pytest.raises(LostLockError):
            await first.complete()
        with pytest.raises(LostLockError):
            await first.heartbeat()

        await second.complete()
        assert (await producer.jobs.get("jid")).state == JobState.COMPLETE

    async def test_grace_period_protects_lease(
        self, producer: Client, worker_a: Client, worker_b: Client
    ):
        """Test that an expired lease is kept through the grace period."""
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        first = await worker_a.queues["foo"].pop()

        await first.timeout()

        assert await worker_b.queues["foo"].pop() is None
        assert await first.lease_held() is True

    async def test_timeout_requires_running_job(self, producer: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")

        with pytest.raises(BackendError):
            await (await producer.jobs.get("jid")).timeout()

    async def test_heartbeat(self, producer: Client, worker_a: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        job = await worker_a.queues["foo"].pop()
        before = job.expires_at

        await asyncio.sleep(0.01)
        expires_at = await job.heartbeat()

        assert expires_at > before
        assert (await producer.jobs.get("jid")).expires_at == expires_at

    async def test_config(self, producer: Client):
        """Test that config is seeded and can be changed."""
        assert await producer.config.get(CONFIG_HEARTBEAT) == 60
        await producer.config.set(CONFIG_HEARTBEAT, 30)
        assert await producer.config.get(CONFIG_HEARTBEAT) == 30

    def test_config_table_holds_key_value_pairs(self):
        """Test that the config table stores nothing besides key and value."""
        assert ConfigRow.__table__.columns.keys() == ["key", "value"]

    async def test_wait_for_state(self, producer: Client, worker_a: Client):
        await producer.queues["foo"].put("JobClass", {}, jid="jid")
        job = await worker_a.queues["foo"].pop()

        async def complete_later():
            await asyncio.sleep(0.02)
            await job.complete()

        task = asyncio.create_task(complete_later())
        done = await producer.jobs.wait_for_state("jid", JobState.COMPLETE, timeout=2)
        await task

        assert done.state == JobState.COMPLETE


class TestSerialWorkerOnSQL:
    """Tests for the serial worker running against the SQL store."""

    async def test_performs_jobs(self, sql_store: SQLJobStore):
        """Test that a worker completes jobs from a SQL-backed queue."""
        registry = HandlerRegistry()
        words: asyncio.Queue = asyncio.Queue()

        @registry.handler("JobClass")
        async def perform(job):
            await words.put(job["word"])

        producer = Client(sql_store, worker_name="producer")
        for word in ("foo", "bar", "howdy"):
            await producer.queues["foo"].put("JobClass", {"word": word}, jid=word)

        worker_client = Client(sql_store, worker_name="worker-1")
        worker = SerialWorker(
            Ordered([worker_client.queues["foo"]]),
            interval=0.01,
            max_startup_interval=0,
            registry=registry,
            lock_check_interval=0.05,
        )

        async with run_jobs(worker, 3):
            seen = [await asyncio.wait_for(words.get(), 5) for _ in range(3)]

        assert seen == ["foo", "bar", "howdy"]
        for word in seen:
            assert (await producer.jobs.get(word)).state == JobState.COMPLETE
