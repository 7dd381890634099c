"""Pattern miner: meta observations and tag-overlap clusters."""

from __future__ import annotations

from collections.abc import Sequence

from memory.consolidation.reflection import ReflectionConfig
from memory.types.memory import MemoryRecord
from memory.types.reflection import MetaObservationContent

MAX_OBSERVATIONS = 5


def _group_by_tag(memories: Sequence[MemoryRecord]) -> dict[str, list[MemoryRecord]]:
    groups: dict[str, list[MemoryRecord]] = {}
    for memory in memories:
        for tag in memory.tags:
            groups.setdefault(tag, []).append(memory)
    return groups


def generate_meta_observations(
    recent: Sequence[MemoryRecord],
    config: ReflectionConfig | None = None,
) -> list[MetaObservationContent]:
    """Recurring failures, contradictions, knowledge gaps and strengths, top 5 by confidence."""
    cfg = config or ReflectionConfig()
    memories = [memory for memory in recent if memory.type != "reflection"]
    if len(memories) < cfg.min_memories_for_meta:
        return []

    pain_by_tag = _group_by_tag([m for m in memories if m.type in {"pain", "fact"}])
    win_by_tag = _group_by_tag([m for m in memories if m.type == "win"])
    observations: list[MetaObservationContent] = []

    for tag, pains in pain_by_tag.items():
        count = len(pains)
        if count >= 3:
            titles = "; ".join(m.title for m in pains[:3])
            observations.append(
                MetaObservationContent(
                    summary=f'Recurring failure pattern in "{tag}" domain ({count} pain memories)',
                    detail="\n".join(
                        [
                            f'Tag "{tag}" appears in {count} pain memories recently.',
                            f"Examples: {titles}",
                            "This suggests a systemic issue rather than isolated incidents.",
                            "Consider: is there a root cause that has not been addressed?",
                        ]
                    ),
                    confidence=min(0.9, 0.5 + count * 0.1),
                    linked_memory_ids=[m.id for m in pains[:6]],
                    pattern_type="recurring-failure",
                    affected_tags=[tag],
                )
            )

    for tag, pains in pain_by_tag.items():
        wins = win_by_tag.get(tag, [])
        if len(pains) >= 2 and len(wins) >= 2:
            observations.append(
                MetaObservationContent(
                    summary=f'Contradictory signals in "{tag}" domain ({len(pains)} pain, {len(wins)} win)',
                    detail="\n".join(
                        [
                            f'Tag "{tag}" has both pain ({len(pains)}) and win ({len(wins)}) memories.',
                            "This could indicate context-dependent success or failure, or approaches",
                            "that have not been reconciled.",
                            f"Pain examples: {'; '.join(m.title for m in pains[:2])}",
                            f"Win examples: {'; '.join(m.title for m in wins[:2])}",
                        ]
                    ),
                    confidence=0.6,
                    linked_memory_ids=[m.id for m in pains[:3]] + [m.id for m in wins[:3]],
                    pattern_type="contradiction",
                    affected_tags=[tag],
                )
            )

    for tag, pains in pain_by_tag.items():
        if len(pains) >= 2 and tag not in win_by_tag:
            observations.append(
                MetaObservationContent(
                    summary=f'Knowledge gap: "{tag}" has {len(pains)} pains but no wins',
                    detail="\n".join(
                        [
                            f'Tag "{tag}" has accumulated {len(pains)} pain memories with zero corresponding wins.',
                            "This domain has caused problems but no successful resolution pattern exists yet.",
                        ]
                    ),
                    confidence=0.7,
                    linked_memory_ids=[m.id for m in pains[:4]],
                    pattern_type="knowledge-gap",
                    affected_tags=[tag],
                )
            )

    for tag, wins in win_by_tag.items():
        if len(wins) >= 3 and tag not in pain_by_tag:
            observations.append(
                MetaObservationContent(
                    summary=f'Strength identified: "{tag}" domain ({len(wins)} wins, 0 pains)',
                    detail="\n".join(
                        [
                            f'Tag "{tag}" has {len(wins)} win memories with no corresponding pains.',
                            "Approaches used here can be trusted and reused in less reliable domains.",
                        ]
                    ),
                    confidence=min(0.9, 0.5 + len(wins) * 0.1),
                    linked_memory_ids=[m.id for m in wins[:4]],
                    pattern_type="strength",
                    affected_tags=[tag],
                )
            )

    observations.sort(key=lambda item: item.confidence, reverse=True)
    return observations[:MAX_OBSERVATIONS]


def cluster_by_tag_overlap(
    memories: Sequence[MemoryRecord],
    min_overlap: int = 2,
    min_cluster_size: int = 3,
) -> list[list[MemoryRecord]]:
    """Greedy clustering: each seed absorbs candidates overlapping its growing tag set."""
    ordered = sorted(memories, key=lambda memory: len(memory.tags), reverse=True)
    assigned: set[str] = set()
    clusters: list[list[MemoryRecord]] = []
    for seed in ordered:
        if seed.id in assigned:
            continue
        cluster = [seed]
        seed_tags = set(seed.tags)
        for candidate in ordered:
            if candidate.id == seed.id or candidate.id in assigned:
                continue
            if len(seed_tags & set(candidate.tags)) >= min_overlap:
                cluster.append(candidate)
                seed_tags.update(candidate.tags)
        if len(cluster) >= min_cluster_size:
            assigned.update(memory.id for memory in cluster)
            clusters.append(cluster)
    return clusters


class PatternMiner:
    """Extracts recurring patterns from recent memories."""

    def __init__(self, config: ReflectionConfig | None = None) -> None:
        self.config = config or ReflectionConfig()

    def observe(self, recent: Sequence[MemoryRecord]) -> list[MetaObservationContent]:
        return generate_meta_observations(recent, self.config)

    def clusters(self, memories: Sequence[MemoryRecord]) -> list[list[MemoryRecord]]:
        candidates = [memory for memory in memories if memory.type != "reflection"]
        return cluster_by_tag_overlap(candidates, self.config.tag_overlap_threshold, self.config.min_cluster_size)

    def tag_counts(self, memories: Sequence[MemoryRecord]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for memory in memories:
            for tag in memory.tags:
                counts[tag] = counts.get(tag, 0) + 1
        return counts
