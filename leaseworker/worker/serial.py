"""
Serial worker: reserves and executes one job at a time.

The worker pulls jobs through its reserver, runs them through the middleware
chain, and reports the terminal state back to the backend. A lease watchdog
runs alongside each job; if the backend reclaims the job the handler is
cancelled and its result is never reported.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from typing import Any, TypeVar

from leaseworker.client import Job
from leaseworker.config import get_settings
from leaseworker.constants import (
    SPAN_PERFORM_JOB,
    SPAN_REPORT_JOB,
    SPAN_RESERVE_JOB,
    EngineState,
    JobOutcome,
    JobState,
)
from leaseworker.errors import (
    BackendUnavailableError,
    HandlerNotFoundError,
    LostLockError,
    TransientBackendError,
    failure_details,
)
from leaseworker.middleware.base import Middleware, MiddlewareChain
from leaseworker.observability.metrics import get_metrics
from leaseworker.observability.tracing import job_span
from leaseworker.reservers.base import JobReserver
from leaseworker.worker.handlers import HandlerRegistry, JobHandler, get_registry
from leaseworker.worker.watchdog import LeaseWatchdog

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_OUTCOMES: dict[JobState, JobOutcome] = {
    JobState.COMPLETE: JobOutcome.COMPLETED,
    JobState.FAILED: JobOutcome.FAILED,
    JobState.WAITING: JobOutcome.RETRIED,
    JobState.SCHEDULED: JobOutcome.RETRIED,
}


class _Interrupted(Exception):
    """A backend call was cut short by `shutdown_now`."""


class SerialWorker:
    """
    Job worker that executes jobs one at a time on the current event loop.

    Features:
    - Sticky reservation across queues through a pluggable reserver
    - Middleware chain shared read-only by every job
    - Lease watchdog that abandons jobs reclaimed by the backend
    - Graceful (`shutdown`) and immediate (`shutdown_now`) stop
    - `run` can be called repeatedly; nothing it starts outlives it
    """

    def __init__(
        self,
        reserver: JobReserver,
        *,
        interval: float | None = None,
        max_startup_interval: float | None = None,
        log_level: int | str | None = None,
        middleware: Iterable[Middleware] = (),
        registry: HandlerRegistry | None = None,
        lock_check_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            reserver: Strategy that picks the next job.
            interval: Seconds to sleep after a reservation finds nothing.
            max_startup_interval: Upper bound of the random delay before the
                first reservation. 0 disables it.
            log_level: Level for the package loggers. Leaves them alone if None.
            middleware: Interceptors wrapping every job, outermost first.
            registry: Handler registry. Defaults to the process-wide one.
            lock_check_interval: Seconds between lease checks while a job runs.
        """
        settings = get_settings()

        self.reserver = reserver
        self.interval = (
            settings.worker_interval_seconds if interval is None else interval
        )
        self.max_startup_interval = (
            settings.worker_max_startup_interval_seconds
            if max_startup_interval is None
            else max_startup_interval
        )
        self.lock_check_interval = (
            settings.worker_lock_check_interval_seconds
            if lock_check_interval is None
            else lock_check_interval
        )
        if self.lock_check_interval <= 0:
            raise ValueError("lock_check_interval must be greater than 0")
        self.middleware = MiddlewareChain(middleware)
        self.registry = registry or get_registry()

        if log_level is not None:
            logging.getLogger("leaseworker").setLevel(log_level)

        self._state = EngineState.IDLE
        self._state_waiters: list[tuple[EngineState, asyncio.Future]] = []
        self._stop: asyncio.Event | None = None
        self._immediate = False
        self._current: asyncio.Task | None = None
        self._started = False
        self._metrics = get_metrics()

    @property
    def name(self) -> str:
        return self.reserver.worker_name

    @property
    def state(self) -> EngineState:
        return self._state

    async def run(self, max_jobs: int | None = None) -> int:
        """
        Process jobs until `max_jobs` have been handled or the worker is told
        to stop.

        Jobs whose lease was lost count towards `max_jobs`. Terminal backend
        errors propagate after the worker has stopped cleanly.

        Returns:
            Number of jobs processed.
        """
        self._stop = asyncio.Event()
        self._immediate = False
        processed = 0

        logger.info(
            "Worker starting",
            extra={
                "worker": self.name,
                "reserver": self.reserver.description,
                "middleware": self.middleware.names,
                "max_jobs": max_jobs,
            },
        )

        try:
            if not self._started:
                self._started = True
                if self.max_startup_interval > 0:
                    await self._sleep(random.uniform(0, self.max_startup_interval))

            while not self._stop.is_set() and (max_jobs is None or processed < max_jobs):
                self._set_state(EngineState.RESERVING)
                job = await self._reserve()

                if job is None:
                    self._set_state(EngineState.IDLE)
                    await self._sleep(self.interval)
                    continue

                await self.process(job)
                processed += 1
                self._set_state(EngineState.IDLE)
        finally:
            self._current = None
            self._set_state(EngineState.STOPPED)
            logger.info(
                "Worker stopped",
                extra={"worker": self.name, "jobs_processed": processed},
            )

        return processed

    def shutdown(self) -> None:
        """Stop after the current job has been reported."""
        logger.info("Worker stopping", extra={"worker": self.name})
        if self._stop is not None:
            self._stop.set()

    def shutdown_now(self) -> None:
        """
        Stop immediately. The in-flight handler or backend call is cancelled
        and nothing is reported for the current job; the backend reclaims it
        once its lease lapses.
        """
        logger.warning("Worker stopping immediately", extra={"worker": self.name})
        self._immediate = True
        if self._stop is not None:
            self._stop.set()
        if self._current is not None:
            self._current.cancel()

    async def wait_for_state(
        self,
        state: EngineState,
        timeout: float | None = None,
    ) -> None:
        """Wait until the run loop enters `state`."""
        if self._state == state:
            return
        future = asyncio.get_running_loop().create_future()
        entry = (state, future)
        self._state_waiters.append(entry)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            self._state_waiters.remove(entry)

    async def process(self, job: Job) -> JobOutcome:
        """
        Execute one reserved job and report its outcome.

        Args:
            job: A job this worker holds the lease on.

        Returns:
            What happened to the attempt.
        """
        self._set_state(EngineState.DISPATCHING)
        started = time.monotonic()

        logger.info(
            "Executing job",
            extra={
                "jid": job.jid,
                "klass": job.klass,
                "queue": job.queue_name,
                "retries_left": job.retries_left,
            },
        )

        try:
            spec = self.registry.resolve(job.klass)
        except HandlerNotFoundError as e:
            logger.error(str(e), extra={"jid": job.jid})
            outcome = await self._report(job, e)
        else:
            chain = self.middleware.extend(spec.middleware)
            outcome = await self._execute(job, chain, spec.perform)

        duration = time.monotonic() - started
        self._metrics.record_job_outcome(job.queue_name, outcome, duration)
        logger.info(
            "Job processed",
            extra={
                "jid": job.jid,
                "outcome": outcome.value,
                "duration": f"{duration:.2f}s",
            },
        )
        return outcome

    async def _execute(
        self,
        job: Job,
        chain: MiddlewareChain,
        perform: JobHandler,
    ) -> JobOutcome:
        self._set_state(EngineState.EXECUTING)
        error: Exception | None = None

        with job_span(
            SPAN_PERFORM_JOB, job.jid, queue=job.queue_name, klass=job.klass
        ) as span:
            task = asyncio.create_task(chain.invoke(job, perform), name=f"job-{job.jid}")
            self._current = task
            try:
                async with LeaseWatchdog(job, task, self.lock_check_interval) as watchdog:
                    try:
                        await task
                    except asyncio.CancelledError:
                        # Our own cancellation, as opposed to the watchdog's
                        # or shutdown_now's cancel of the handler task
                        if asyncio.current_task().cancelling():
                            raise
                    except Exception as e:
                        error = e
            finally:
                self._current = None

            if watchdog.lease_lost:
                # Whatever the handler did after losing the lease is not reported
                self._metrics.record_lease_lost(job.queue_name)
                span.set_attribute("job.outcome", JobOutcome.RECLAIMED.value)
                return JobOutcome.RECLAIMED
            if task.cancelled():
                logger.warning("Job abandoned on immediate shutdown", extra={"jid": job.jid})
                return JobOutcome.ABANDONED

        return await self._report(job, error)

    async def _report(self, job: Job, error: BaseException | None) -> JobOutcome:
        """Record the attempt's terminal state with the backend, once."""
        self._set_state(EngineState.REPORTING)

        if isinstance(error, LostLockError):
            logger.info(
                "Lease lost before the job could report, dropping result",
                extra={"jid": job.jid, "reason": error.reason},
            )
            return JobOutcome.RECLAIMED

        if job.state_changed:
            if error is not None:
                logger.warning(
                    "Job raised after recording its own state",
                    extra={"jid": job.jid, "error": repr(error)},
                )
            return _STATE_OUTCOMES.get(job.state, JobOutcome.COMPLETED)

        with job_span(SPAN_REPORT_JOB, job.jid):
            try:
                if error is None:
                    await self._interruptible(job.complete)
                    return JobOutcome.COMPLETED

                group, message = failure_details(error)
                logger.warning(
                    "Job failed",
                    extra={"jid": job.jid, "group": group, "error": str(error)},
                )
                await self._interruptible(job.fail, group, message)
                return JobOutcome.FAILED
            except _Interrupted:
                logger.warning("Report abandoned on immediate shutdown", extra={"jid": job.jid})
                return JobOutcome.ABANDONED
            except LostLockError as e:
                logger.info(
                    "Result rejected, lease no longer held",
                    extra={"jid": job.jid, "reason": e.reason},
                )
                return JobOutcome.RECLAIMED
            except TransientBackendError:
                logger.exception("Failed to record job result", extra={"jid": job.jid})
                return JobOutcome.FAILED if error is not None else JobOutcome.COMPLETED

    async def _reserve(self) -> Job | None:
        with job_span(SPAN_RESERVE_JOB, worker=self.name):
            try:
                job = await self._interruptible(self.reserver.reserve)
            except _Interrupted:
                return None
            except BackendUnavailableError:
                logger.exception("Backend unavailable", extra={"worker": self.name})
                raise

        if job is None:
            self._metrics.record_empty_poll(self.name)
            logger.debug("No jobs available", extra={"worker": self.name})
            return None

        self._metrics.record_job_reserved(job.queue_name)
        return job

    async def _interruptible(self, call: Callable[..., Awaitable[T]], *args: Any) -> T:
        """
        Run a backend call in a task `shutdown_now` can cancel.

        Raises:
            _Interrupted: The call was cancelled, or never started because an
                immediate stop was already requested.
        """
        if self._immediate:
            raise _Interrupted
        task = asyncio.create_task(call(*args))
        self._current = task
        try:
            return await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
            raise _Interrupted from None
        finally:
            self._current = None

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early when the worker is told to stop."""
        if seconds <= 0 or self._stop is None:
            return
        with suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), seconds)

    def _set_state(self, state: EngineState) -> None:
        if state == self._state:
            return
        logger.debug(
            "Worker state change",
            extra={"worker": self.name, "from": self._state.value, "to": state.value},
        )
        self._state = state
        for wanted, future in self._state_waiters:
            if wanted == state and not future.done():
                future.set_result(None)
