"""
Job middleware: interceptors wrapping handler execution.
"""

from leaseworker.middleware.base import Middleware, MiddlewareChain, NextCall
from leaseworker.middleware.logging import LoggingMiddleware
from leaseworker.middleware.retry import (
    RetryOnException,
    error_kinds,
    exponential_backoff,
)

__all__ = [
    "LoggingMiddleware",
    "Middleware",
    "MiddlewareChain",
    "NextCall",
    "RetryOnException",
    "error_kinds",
    "exponential_backoff",
]
