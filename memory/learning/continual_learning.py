"""Deferred cortex learning from retrieval gaps."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from memory.learning.cortex_learner import (
    LearnResult,
    analyze_gaps,
    learn_from_observations,
)
from memory.schemas import utc_now

logger = logging.getLogger("brain.cortex")


@dataclass
class PendingGaps:
    query_text: str
    gaps: list[str]


class CortexLearningLoop:
    """Queues gap words from retrievals and folds them into the learned cortex.

    There is no timer thread: callers invoke ``flush_if_stale`` on each access
    and ``flush`` at session end.
    """

    def __init__(
        self,
        memory_manager: Any,
        flush_interval_seconds: float = 300.0,
        min_observations: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.memory_manager = memory_manager
        self.flush_interval_seconds = flush_interval_seconds
        self.min_observations = min_observations
        self._clock = clock
        self._queue: list[PendingGaps] = []
        self._last_flush = clock()

    @property
    def pending(self) -> int:
        return sum(len(item.gaps) for item in self._queue)

    def enqueue(self, gaps: Iterable[str], query_text: str) -> None:
        words = [gap for gap in gaps if gap]
        if words:
            self._queue.append(PendingGaps(query_text=query_text, gaps=words))

    def is_stale(self) -> bool:
        return self._clock() - self._last_flush >= self.flush_interval_seconds

    def flush_if_stale(self) -> LearnResult | None:
        if self._queue and self.is_stale():
            return self.flush()
        return None

    def flush(self) -> LearnResult | None:
        """Analyze every queued gap against the store and persist what was learned."""
        self._last_flush = self._clock()
        if not self._queue:
            return None
        queued, self._queue = self._queue, []

        memories = self.memory_manager.list_memories(include_superseded=False)
        seed = self.memory_manager.seed_table
        observations = []
        gap_count = 0
        for item in queued:
            gap_count += len(item.gaps)
            observations.extend(analyze_gaps(item.gaps, item.query_text, memories, seed))

        store = self.memory_manager.load_cortex_store()
        result = learn_from_observations(observations, store.entries, self.min_observations)
        store.entries = result.entries
        store.total_gaps_processed += gap_count
        store.last_updated = utc_now()
        self.memory_manager.save_cortex_store(store)

        if result.new_entries:
            logger.info(
                "learned %d cortex entries: %s",
                len(result.new_entries),
                ", ".join(entry.word for entry in result.new_entries),
            )
        logger.debug("flushed %d gaps into %d observations", gap_count, len(observations))
        return result
