"""
SQLAlchemy database models.
Defines the jobs and config tables used by the SQL job store.
"""

from typing import Any

from sqlalchemy import JSON, BigInteger, Enum, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from leaseworker.constants import DEFAULT_PRIORITY, DEFAULT_RETRIES, JobState

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRow(Base):
    """
    Job row, the authoritative source of truth for job state.

    Key constraints:
    - a running job has exactly one lease_token; every report is a
      compare-and-set guarded by (jid, state, lease_token)
    - expires_at, available_at and created_at are epoch seconds
    """

    __tablename__ = "jobs"

    jid: Mapped[str] = mapped_column(String(64), primary_key=True)
    klass: Mapped[str] = mapped_column(String(255), nullable=False)
    queue: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.WAITING,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_PRIORITY)

    # Retry tracking
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_RETRIES)
    retries_left: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_RETRIES)

    # Lease management
    worker: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Scheduling
    available_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Failure and history
    failure: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        # Queue polling: waiting jobs by priority then FIFO
        Index("ix_jobs_queue_poll", "queue", "state", "priority", "sequence"),
        # Stalled lease scans
        Index("ix_jobs_lease_expiry", "queue", "state", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"JobRow(jid={self.jid}, queue={self.queue}, state={self.state}, "
            f"retries_left={self.retries_left}/{self.retries})"
        )


class ConfigRow(Base):
    """Process-wide backend configuration (heartbeat, grace-period, ...)."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONType, nullable=True)
