"""
Helpers for tests that drive a worker against a real or in-memory store.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from leaseworker.worker.serial import SerialWorker


@asynccontextmanager
async def run_jobs(
    worker: SerialWorker,
    count: int,
    timeout: float = 10.0,
) -> AsyncIterator[asyncio.Task]:
    """
    Run `worker` for `count` jobs in the background around the body.

    On a clean exit the worker gets `timeout` seconds to finish its jobs;
    errors it raised are re-raised here. If the body raises, the worker is
    stopped immediately. Either way the run task is finished on exit.

    Example:
        async with run_jobs(worker, 3):
            assert await words.get() == "foo"
    """
    task = asyncio.create_task(worker.run(count), name="leaseworker-run-jobs")
    try:
        yield task
        await asyncio.wait_for(task, timeout)
    finally:
        if not task.done():
            worker.shutdown_now()
            task.cancel()
            await asyncio.wait([task])
