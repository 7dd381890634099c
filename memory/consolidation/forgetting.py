"""Capacity checks and archive-based forgetting."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from memory.schemas import as_utc, utc_now
from memory.scoring import ScoringConfig, score_memory
from memory.types.archive import ArchivedMemory, ArchiveStats
from memory.types.memory import MemoryRecord

logger = logging.getLogger("brain.consolidation")

CapacityLevel = Literal["ok", "warning", "critical"]


class PruneOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    capacity: int = 1000
    warning_pct: float = 0.8
    min_score: float = 0.10
    max_stale_days: int = 90
    min_quality: float = 0.10
    min_memory_count: int = 50


@dataclass
class CapacityStatus:
    level: CapacityLevel
    total: int
    capacity: int
    pct: float

    @property
    def should_prune(self) -> bool:
        return self.level == "critical"


@dataclass
class PruneStats:
    total_before: int = 0
    total_after: int = 0
    superseded_count: int = 0
    stale_count: int = 0
    low_quality_count: int = 0


@dataclass
class PruneResult:
    kept: list[MemoryRecord]
    archived: list[ArchivedMemory]
    stats: PruneStats = field(default_factory=PruneStats)


def check_capacity(total_count: int, options: PruneOptions | None = None) -> CapacityStatus:
    opts = options or PruneOptions()
    pct = total_count / opts.capacity if opts.capacity else 1.0
    if pct >= 1.0:
        level: CapacityLevel = "critical"
    elif pct >= opts.warning_pct:
        level = "warning"
    else:
        level = "ok"
    return CapacityStatus(level=level, total=total_count, capacity=opts.capacity, pct=pct)


def prune_memories(
    memories: Sequence[MemoryRecord],
    options: PruneOptions | None = None,
    now: datetime | None = None,
    scoring: ScoringConfig | None = None,
) -> PruneResult:
    """Split memories into kept and archive candidates. Inputs are not mutated.

    Superseded records go first, then stale ones (score under the floor and
    untouched past the stale window), then records under the quality floor.
    Small stores are left alone.
    """
    opts = options or PruneOptions()
    now = as_utc(now) or utc_now()
    stats = PruneStats(total_before=len(memories), total_after=len(memories))
    if len(memories) < opts.min_memory_count:
        return PruneResult(kept=list(memories), archived=[], stats=stats)

    stale_cutoff = now - timedelta(days=opts.max_stale_days)
    kept: list[MemoryRecord] = []
    archived: list[ArchivedMemory] = []
    for memory in memories:
        score = score_memory(memory, now, config=scoring)

        if memory.superseded_by:
            archived.append(
                ArchivedMemory(
                    memory=memory,
                    reason=f"Superseded by {memory.superseded_by}",
                    archived_at=now,
                    score_at_archive=score,
                )
            )
            stats.superseded_count += 1
            continue

        if score < opts.min_score:
            last_activity = as_utc(memory.last_accessed or memory.created_at)
            if last_activity < stale_cutoff:
                idle_days = int((now - last_activity).total_seconds() // 86400)
                archived.append(
                    ArchivedMemory(
                        memory=memory,
                        reason=f"Stale: score {score:.2f}, last accessed {idle_days}d ago",
                        archived_at=now,
                        score_at_archive=score,
                    )
                )
                stats.stale_count += 1
                continue

        if memory.quality_score is not None and memory.quality_score < opts.min_quality:
            archived.append(
                ArchivedMemory(
                    memory=memory,
                    reason=f"Low quality: {memory.quality_score:.2f}",
                    archived_at=now,
                    score_at_archive=score,
                )
            )
            stats.low_quality_count += 1
            continue

        kept.append(memory)

    stats.total_after = len(kept)
    return PruneResult(kept=kept, archived=archived, stats=stats)


def preview_prune(
    memories: Sequence[MemoryRecord],
    options: PruneOptions | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Dry run of prune_memories."""
    result = prune_memories(memories, options, now)
    return {
        "would_archive": [{"id": item.memory.id, "title": item.memory.title, "reason": item.reason} for item in result.archived],
        "would_keep": len(result.kept),
    }


def restore_from_archive(archived: ArchivedMemory, now: datetime | None = None) -> MemoryRecord:
    """Live copy of an archived record with supersession cleared and fresh access time."""
    return archived.memory.model_copy(
        update={"superseded_by": None, "last_accessed": as_utc(now) or utc_now()},
        deep=True,
    )


def reason_key(reason: str) -> str:
    head = reason.split(":", 1)[0]
    return head.split(" by ", 1)[0].strip()


def archive_stats(
    archived: Iterable[ArchivedMemory],
    total_archived: int | None = None,
    last_pruned: datetime | None = None,
) -> ArchiveStats:
    items = list(archived)
    by_reason: dict[str, int] = {}
    for item in items:
        key = reason_key(item.reason)
        by_reason[key] = by_reason.get(key, 0) + 1
    return ArchiveStats(
        total_archived=len(items) if total_archived is None else total_archived,
        currently_archived=len(items),
        last_pruned=last_pruned,
        by_reason=by_reason,
    )


class Pruner:
    """Applies prune_memories to the live store and cleans links that now dangle."""

    def __init__(self, memory_manager: Any, options: PruneOptions | None = None, scoring: ScoringConfig | None = None) -> None:
        self.memory_manager = memory_manager
        self.options = options or PruneOptions()
        self.scoring = scoring

    def capacity(self) -> CapacityStatus:
        return check_capacity(self.memory_manager.count_memories(), self.options)

    def preview(self) -> dict[str, Any]:
        return preview_prune(self.memory_manager.list_memories(), self.options)

    def run(self) -> dict[str, Any]:
        """Archive dead weight and remove dangling links."""
        memories = self.memory_manager.list_memories()
        result = prune_memories(memories, self.options, scoring=self.scoring)
        archived = self.memory_manager.archive_memories(result.archived) if result.archived else 0
        links_removed = self.memory_manager.clean_dangling_links() if archived else 0
        if archived:
            logger.info(
                "archived %d memories (%d superseded, %d stale, %d low quality)",
                archived,
                result.stats.superseded_count,
                result.stats.stale_count,
                result.stats.low_quality_count,
            )
        return {
            "archived": archived,
            "links_removed": links_removed,
            "superseded_count": result.stats.superseded_count,
            "stale_count": result.stats.stale_count,
            "low_quality_count": result.stats.low_quality_count,
            "total_after": result.stats.total_after,
        }
