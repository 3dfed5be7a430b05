"""
Job reservers: strategies for picking the next queue to poll.
"""

from collections.abc import Sequence

from leaseworker.client import Queue
from leaseworker.reservers.base import JobReserver
from leaseworker.reservers.ordered import Ordered
from leaseworker.reservers.round_robin import RoundRobin
from leaseworker.reservers.shuffled_round_robin import ShuffledRoundRobin

RESERVERS: dict[str, type[JobReserver]] = {
    "round_robin": RoundRobin,
    "ordered": Ordered,
    "shuffled": ShuffledRoundRobin,
}


def create_reserver(kind: str, queues: Sequence[Queue]) -> JobReserver:
    """Build a reserver by its configured name."""
    try:
        reserver_class = RESERVERS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown reserver {kind!r}, expected one of {sorted(RESERVERS)}"
        ) from None
    return reserver_class(queues)


__all__ = [
    "JobReserver",
    "Ordered",
    "RoundRobin",
    "ShuffledRoundRobin",
    "create_reserver",
]
