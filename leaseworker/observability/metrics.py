"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    start_http_server,
)

from leaseworker.constants import (
    METRIC_EMPTY_POLLS,
    METRIC_JOB_DURATION,
    METRIC_JOB_OUTCOMES,
    METRIC_JOBS_RESERVED,
    METRIC_LEASE_LOST,
    METRIC_RESERVATION_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for workers.

    Collects metrics for:
    - Job reservations and empty polls
    - Job outcomes and execution duration
    - Lost leases
    - Transient reservation errors
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_reserved = Counter(
            METRIC_JOBS_RESERVED,
            "Total number of jobs reserved",
            ["queue"],
            registry=self._registry,
        )

        self.job_outcomes = Counter(
            METRIC_JOB_OUTCOMES,
            "Total number of job attempts by outcome",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_lost = Counter(
            METRIC_LEASE_LOST,
            "Total number of leases lost while a job was executing",
            ["queue"],
            registry=self._registry,
        )

        self.reservation_errors = Counter(
            METRIC_RESERVATION_ERRORS,
            "Total number of transient errors while polling a queue",
            ["queue"],
            registry=self._registry,
        )

        self.empty_polls = Counter(
            METRIC_EMPTY_POLLS,
            "Total number of reservations that found no job",
            ["worker"],
            registry=self._registry,
        )

    def record_job_reserved(self, queue: str) -> None:
        """Record a job reservation."""
        self.jobs_reserved.labels(queue=queue).inc()

    def record_job_outcome(
        self,
        queue: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record how an attempt ended and how long it ran."""
        self.job_outcomes.labels(queue=queue, outcome=outcome).inc()
        self.job_duration.labels(queue=queue, outcome=outcome).observe(duration_seconds)

    def record_lease_lost(self, queue: str) -> None:
        """Record a lease lost mid-execution."""
        self.lease_lost.labels(queue=queue).inc()

    def record_reservation_error(self, queue: str) -> None:
        """Record a transient polling error."""
        self.reservation_errors.labels(queue=queue).inc()

    def record_empty_poll(self, worker: str) -> None:
        """Record a reservation that found nothing."""
        self.empty_polls.labels(worker=worker).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, also serve /metrics over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
