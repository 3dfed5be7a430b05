"""
Integration tests for the worker process signal handling.
"""

import asyncio
import os
import signal

import pytest

from leaseworker.client import Client, Queue
from leaseworker.constants import EngineState, JobState
from leaseworker.worker.handlers import HandlerRegistry
from leaseworker.worker.main import install_signal_handlers


@pytest.fixture
async def signal_handlers():
    """Remove the loop's signal handlers after the test."""
    yield
    loop = asyncio.get_running_loop()
    loop.remove_signal_handler(signal.SIGTERM)
    loop.remove_signal_handler(signal.SIGINT)


class TestSignals:
    """Tests for install_signal_handlers."""

    async def test_sigterm_stops_gracefully(self, make_worker, signal_handlers):
        """Test that SIGTERM stops an idle worker."""
        worker = make_worker(interval=30)
        install_signal_handlers(worker)
        task = asyncio.create_task(worker.run())
        await worker.wait_for_state(EngineState.RESERVING, timeout=1)

        os.kill(os.getpid(), signal.SIGTERM)

        assert await asyncio.wait_for(task, 1) == 0
        assert worker.state == EngineState.STOPPED

    async def test_second_sigint_stops_immediately(
        self,
        client: Client,
        queue: Queue,
        registry: HandlerRegistry,
        words,
        make_worker,
        signal_handlers,
    ):
        """Test that the first SIGINT waits for the job and the second does not."""

        @registry.handler("JobClass")
        async def perform(job):
            await words.put(job.jid)
            await asyncio.Event().wait()

        await queue.put("JobClass", {}, jid="jid")
        worker = make_worker()
        install_signal_handlers(worker)
        task = asyncio.create_task(worker.run())
        assert await asyncio.wait_for(words.get(), 1) == "jid"

        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(0.05)
        assert not task.done()

        os.kill(os.getpid(), signal.SIGINT)
        assert await asyncio.wait_for(task, 1) == 1
        assert (await client.jobs.get("jid")).state == JobState.RUNNING
