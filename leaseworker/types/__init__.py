"""
Type definitions for the worker.
"""

from leaseworker.types.job import (
    HistoryEvent,
    JobData,
    JobFailure,
    LeaseInfo,
)

__all__ = [
    "HistoryEvent",
    "JobData",
    "JobFailure",
    "LeaseInfo",
]
