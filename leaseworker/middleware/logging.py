"""
Logging middleware: binds job identity to every log line of an attempt.
"""

import logging
import time

import structlog

from leaseworker.client import Job
from leaseworker.middleware.base import Middleware, NextCall

logger = logging.getLogger(__name__)


class LoggingMiddleware(Middleware):
    """Bind jid/queue/klass as structlog context vars and log each attempt."""

    async def around(self, job: Job, call_next: NextCall) -> None:
        started = time.monotonic()
        with structlog.contextvars.bound_contextvars(
            jid=job.jid,
            queue=job.queue_name,
            klass=job.klass,
        ):
            logger.info("Job started", extra={"retries_left": job.retries_left})
            try:
                await call_next()
            except Exception as exc:
                logger.info(
                    "Job raised",
                    extra={
                        "error": type(exc).__name__,
                        "duration": f"{time.monotonic() - started:.2f}s",
                    },
                )
                raise
            logger.info(
                "Job finished",
                extra={"duration": f"{time.monotonic() - started:.2f}s"},
            )
