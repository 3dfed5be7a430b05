"""
Job stores: the backends a worker reserves jobs from and reports to.
"""

from leaseworker.store.base import JobStore
from leaseworker.store.memory import MemoryJobStore
from leaseworker.store.sql import SQLJobStore

__all__ = ["JobStore", "MemoryJobStore", "SQLJobStore"]
