"""
Worker module.
Contains the serial execution engine, lease watchdog and handler registry.
"""

from leaseworker.worker.handlers import (
    HandlerRegistry,
    HandlerSpec,
    JobHandler,
    get_handler,
    get_registry,
    list_handlers,
    register_handler,
)
from leaseworker.worker.serial import SerialWorker
from leaseworker.worker.watchdog import LeaseWatchdog

__all__ = [
    "HandlerRegistry",
    "HandlerSpec",
    "JobHandler",
    "LeaseWatchdog",
    "SerialWorker",
    "get_handler",
    "get_registry",
    "list_handlers",
    "register_handler",
]
