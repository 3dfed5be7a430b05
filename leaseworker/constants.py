"""
Application constants.
Centralized location for all constant values used across the worker.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job states as recorded by the backend.

    State transitions:
    - WAITING -> RUNNING (popped, lease assigned)
    - SCHEDULED -> WAITING (delay elapsed)
    - RUNNING -> COMPLETE (complete)
    - RUNNING -> WAITING / SCHEDULED (retry, retries left decremented)
    - RUNNING -> FAILED (fail, or retry with no retries left)
    - RUNNING -> RUNNING (lease lapsed past grace period, reclaimed by a new owner)
    """

    WAITING = "waiting"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class JobOutcome(StrEnum):
    """What happened to one attempt, seen from the worker."""

    COMPLETED = "completed"
    FAILED = "failed"
    RETRIED = "retried"
    RECLAIMED = "reclaimed"
    ABANDONED = "abandoned"


class EngineState(StrEnum):
    """
    Serial worker run-loop states.

    IDLE -> RESERVING -> DISPATCHING -> EXECUTING -> REPORTING -> IDLE,
    with STOPPED reachable from any state.
    """

    IDLE = "idle"
    RESERVING = "reserving"
    DISPATCHING = "dispatching"
    EXECUTING = "executing"
    REPORTING = "reporting"
    STOPPED = "stopped"


# Backend config keys
CONFIG_HEARTBEAT = "heartbeat"
CONFIG_GRACE_PERIOD = "grace-period"

# Default values
DEFAULT_HEARTBEAT_SECONDS = 60
DEFAULT_GRACE_PERIOD_SECONDS = 10
DEFAULT_RETRIES = 5
DEFAULT_PRIORITY = 0

BACKEND_CONFIG_DEFAULTS: dict[str, int] = {
    CONFIG_HEARTBEAT: DEFAULT_HEARTBEAT_SECONDS,
    CONFIG_GRACE_PERIOD: DEFAULT_GRACE_PERIOD_SECONDS,
}

# Failure group for jobs that stalled with no retries left
STALLED_FAILURE_GROUP = "failed-retries-{queue}"

# Metrics names
METRIC_JOBS_RESERVED = "leaseworker_jobs_reserved_total"
METRIC_JOB_OUTCOMES = "leaseworker_job_outcomes_total"
METRIC_JOB_DURATION = "leaseworker_job_duration_seconds"
METRIC_LEASE_LOST = "leaseworker_lease_lost_total"
METRIC_RESERVATION_ERRORS = "leaseworker_reservation_errors_total"
METRIC_EMPTY_POLLS = "leaseworker_empty_polls_total"

# Trace span names
SPAN_RESERVE_JOB = "reserve_job"
SPAN_PERFORM_JOB = "perform_job"
SPAN_REPORT_JOB = "report_job"
