"""
Lease-based job queue worker.

Workers reserve jobs from named queues, run them through a middleware chain,
and honour the backend's lease protocol so abandoned jobs get reclaimed.
"""

__version__ = "1.0.0"
