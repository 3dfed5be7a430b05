"""
Exception hierarchy shared by the worker and the job stores.
"""

import traceback


class LeaseWorkerError(Exception):
    """Base class for all worker errors."""


class BackendError(LeaseWorkerError):
    """An operation against the job backend failed."""


class TransientBackendError(BackendError):
    """
    A backend call failed in a way that is worth retrying later.

    Reservers treat this as "no job from this queue" for the current cycle.
    """


class BackendUnavailableError(BackendError):
    """The backend cannot be reached at all. Propagates out of the worker."""


class LostLockError(BackendError):
    """The caller no longer holds the lease on a job it tried to update."""

    def __init__(self, jid: str, reason: str = "lease no longer held"):
        super().__init__(f"{jid}: {reason}")
        self.jid = jid
        self.reason = reason


class JobNotFoundError(BackendError):
    """The referenced job does not exist."""

    def __init__(self, jid: str):
        super().__init__(f"Job {jid} does not exist")
        self.jid = jid


class HandlerNotFoundError(LeaseWorkerError):
    """No handler is registered for a job's class reference."""

    def __init__(self, klass: str):
        super().__init__(f"No handler registered for job class: {klass}")
        self.klass = klass


def failure_details(exc: BaseException) -> tuple[str, str]:
    """
    Derive the (group, message) a failed job is recorded with.

    The group is the exception class name; the message is the exception text
    followed by its traceback.
    """
    group = type(exc).__name__
    text = str(exc)
    summary = f"{group}: {text}" if text else group
    trace = "".join(traceback.format_tb(exc.__traceback__)) if exc.__traceback__ else ""
    return group, f"{summary}\n{trace}".rstrip()
