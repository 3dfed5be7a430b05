"""
Database module.
Contains database connection, models, and the job repository.
"""

from leaseworker.db.connection import (
    create_schema,
    create_session_factory,
    drop_schema,
    get_engine,
    get_test_engine,
)
from leaseworker.db.models import Base, ConfigRow, JobRow

__all__ = [
    "get_engine",
    "get_test_engine",
    "create_session_factory",
    "create_schema",
    "drop_schema",
    "Base",
    "ConfigRow",
    "JobRow",
]
