"""
Round robin over a shuffled queue order.
"""

import random
from collections.abc import Sequence

from leaseworker.client import Queue
from leaseworker.reservers.round_robin import RoundRobin


class ShuffledRoundRobin(RoundRobin):
    """
    Round robin whose order is shuffled once per instance, so many workers
    configured with the same queue list do not all start on the same queue.
    """

    def __init__(self, queues: Sequence[Queue], rng: random.Random | None = None):
        shuffled = list(queues)
        (rng or random).shuffle(shuffled)
        super().__init__(shuffled)
