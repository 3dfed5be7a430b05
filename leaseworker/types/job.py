"""
Job-related type definitions shared by the stores and the client.
"""

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from leaseworker.constants import DEFAULT_PRIORITY, DEFAULT_RETRIES, JobState


class JobFailure(BaseModel):
    """Why a job ended up in the failed state."""

    group: str
    message: str
    when: float
    worker: str | None = None


class HistoryEvent(BaseModel):
    """One entry in a job's history (put, popped, reclaimed, retried, ...)."""

    what: str
    when: float
    worker: str | None = None
    detail: str | None = None


class JobData(BaseModel):
    """
    Snapshot of a job as recorded by the backend.

    Stores return fresh copies; mutating a snapshot never changes the backend.
    """

    jid: str
    klass: str
    queue: str
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    retries: int = DEFAULT_RETRIES
    retries_left: int = DEFAULT_RETRIES
    state: JobState = JobState.WAITING
    worker: str | None = None
    lease_token: str | None = None
    expires_at: float | None = None
    available_at: float | None = None
    created_at: float = Field(default_factory=time.time)
    sequence: int = 0
    failure: JobFailure | None = None
    history: list[HistoryEvent] = Field(default_factory=list)


@dataclass
class LeaseInfo:
    """
    Information about a job lease.
    The token is what the backend checks every report against.
    """

    jid: str
    worker: str
    token: str
    expires_at: float
