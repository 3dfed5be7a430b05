"""
Unit tests for the lease watchdog.
"""

import asyncio
import time

import pytest

from leaseworker.client import Client, Job, Queue
from leaseworker.constants import CONFIG_GRACE_PERIOD, CONFIG_HEARTBEAT
from leaseworker.store import MemoryJobStore
from leaseworker.worker.watchdog import LeaseWatchdog


@pytest.fixture
async def job(queue: Queue) -> Job:
    await queue.put("JobClass", {}, jid="jid")
    return await queue.pop()


class TestLeaseWatchdog:
    """Tests for LeaseWatchdog."""

    async def test_cancels_handler_when_lease_lost(self, job: Job, client):
        """Test that a reclaimable lease cancels the handler task."""
        await client.config.set(CONFIG_GRACE_PERIOD, 0)
        task = asyncio.create_task(asyncio.sleep(10))

        async with LeaseWatchdog(job, task, check_interval=0.01) as watchdog:
            await job.timeout()
            await asyncio.wait([task], timeout=1)

        assert task.cancelled()
        assert watchdog.lease_lost is True

    async def test_leaves_healthy_job_alone(self, job: Job):
        """Test that a held lease lets the handler finish."""
        task = asyncio.create_task(asyncio.sleep(0.05))

        async with LeaseWatchdog(job, task, check_interval=0.01) as watchdog:
            await task

        assert not task.cancelled()
        assert watchdog.lease_lost is False

    async def test_ignores_job_that_recorded_its_state(self, job: Job, client):
        """Test that a job which completed itself is not treated as lost."""
        release = asyncio.Event()

        async def handler():
            await job.complete()
            await release.wait()

        task = asyncio.create_task(handler())
        async with LeaseWatchdog(job, task, check_interval=0.01) as watchdog:
            await asyncio.sleep(0.05)
            release.set()
            await task

        assert watchdog.lease_lost is False

    async def test_watcher_task_does_not_outlive_context(self, job: Job):
        """Test that exiting the context leaves no watcher task behind."""
        before = asyncio.all_tasks()
        task = asyncio.create_task(asyncio.sleep(0.01))
        async with LeaseWatchdog(job, task, check_interval=10):
            await task

        assert asyncio.all_tasks() == before

    async def test_checks_follow_interval_not_lease_deadline(self, clock):
        """Test that the lease deadline on the store clock does not speed up checks."""
        # Deadline a few milliseconds ahead of wall-clock time
        clock.now = time.time() - 59.99
        store = MemoryJobStore(config={CONFIG_HEARTBEAT: 60}, clock=clock)
        queue = Client(store, worker_name="worker-1").queues["foo"]
        await queue.put("JobClass", {}, jid="jid")
        job = await queue.pop()

        checks: list[float] = []
        lease_held = job.lease_held

        async def counting_lease_held() -> bool:
            checks.append(clock())
            return await lease_held()

        job.lease_held = counting_lease_held
        task = asyncio.create_task(asyncio.sleep(0.1))
        async with LeaseWatchdog(job, task, check_interval=10):
            await task

        assert checks == []
