"""
Seeds live counters from the durable aggregate so progress survives restarts
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from learning.models import Aggregate, LiveCounters, MergeRequest
from learning.statistics import LearningStatistics, get_statistics
from learning.store import AggregateStoreClient

logger = logging.getLogger(__name__)


class ReaderState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    DEGRADED = "degraded"


class StatisticsReader:
    """
    Loads the aggregate on mount and keeps a local working copy of it.

    READY means counters were seeded from a loaded aggregate, DEGRADED means
    they start at zero because it was absent or unreachable. Both states
    accept answer events the same way.
    """

    def __init__(self, client: AggregateStoreClient, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock
        self.state = ReaderState.UNINITIALIZED
        self.aggregate: Optional[Aggregate] = None
        self.counters = LiveCounters()

    @property
    def seed_streak(self) -> int:
        return self.aggregate.current_streak if self.aggregate else 0

    async def load(self) -> LiveCounters:
        self.state = ReaderState.LOADING
        aggregate = await self.client.load_aggregate()

        if aggregate is not None:
            self.aggregate = aggregate
            self.counters = LiveCounters.from_aggregate(aggregate)
            self.state = ReaderState.READY
            logger.debug(f"Seeded counters from aggregate: {self.counters}")
        else:
            self.aggregate = None
            self.counters = LiveCounters()
            self.state = ReaderState.DEGRADED
            if self.client.last_error is not None:
                logger.warning("Statistics unavailable, starting from zeroed counters")
            else:
                logger.info("No statistics yet, starting from zero")

        return self.counters

    def track(self, attempted: bool, correct: bool, streak: int):
        """Mirror one answer event into the live counters"""
        if attempted:
            self.counters.questions_answered += 1
        if correct:
            self.counters.score += 1
        self.counters.streak = streak

    def apply_merge(self, request: MergeRequest):
        """Fold a successful merge into the local copy of the aggregate"""
        if self.aggregate is None:
            if not self.client.user_id:
                return
            self.aggregate = Aggregate(user_id=self.client.user_id)
        self.aggregate.apply_merge(request, self.clock())

    def statistics(self) -> Optional[LearningStatistics]:
        if self.aggregate is None:
            return None
        return get_statistics(self.aggregate)
