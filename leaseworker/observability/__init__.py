"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from leaseworker.observability.logging import setup_logging
from leaseworker.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from leaseworker.observability.tracing import get_tracer, job_span, setup_tracing

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "job_span",
]
