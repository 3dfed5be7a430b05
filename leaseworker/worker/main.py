"""
Worker process entry point.

Builds a SQL-backed worker from settings and runs it until SIGTERM
(graceful) or SIGINT (graceful, immediate on the second one).
"""

import asyncio
import logging
import os
import signal

from leaseworker.client import Client
from leaseworker.config import get_settings
from leaseworker.constants import CONFIG_GRACE_PERIOD, CONFIG_HEARTBEAT
from leaseworker.db import get_engine
from leaseworker.observability.logging import setup_logging
from leaseworker.observability.metrics import setup_metrics
from leaseworker.observability.tracing import setup_tracing
from leaseworker.reservers import create_reserver
from leaseworker.store.sql import SQLJobStore
from leaseworker.worker.serial import SerialWorker

logger = logging.getLogger(__name__)


def install_signal_handlers(worker: SerialWorker) -> None:
    """SIGTERM stops gracefully; SIGINT too, and a second SIGINT stops at once."""
    loop = asyncio.get_running_loop()
    interrupted = False

    def on_interrupt() -> None:
        nonlocal interrupted
        if interrupted:
            worker.shutdown_now()
        else:
            interrupted = True
            worker.shutdown()

    loop.add_signal_handler(signal.SIGTERM, worker.shutdown)
    loop.add_signal_handler(signal.SIGINT, on_interrupt)


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    worker_name = settings.worker_name or f"{os.uname().nodename}-{os.getpid()}"
    setup_logging(worker_name=worker_name)
    setup_metrics(settings.prometheus_port)

    engine = get_engine()
    if settings.tracing_enabled:
        setup_tracing(engine)

    store = SQLJobStore(engine)
    await store.init_schema(
        {
            CONFIG_HEARTBEAT: settings.lease_heartbeat_seconds,
            CONFIG_GRACE_PERIOD: settings.lease_grace_period_seconds,
        }
    )

    client = Client(store, worker_name=worker_name)
    reserver = create_reserver(
        settings.reserver,
        [client.queues[name] for name in settings.queue_names],
    )
    worker = SerialWorker(reserver, log_level=settings.log_level.upper())
    install_signal_handlers(worker)

    try:
        await worker.run()
    finally:
        await client.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
