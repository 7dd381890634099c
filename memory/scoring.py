"""Decay-based relevance scoring and health classification."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from memory.schemas import as_utc, utc_now
from memory.types.memory import HealthStatus, MemoryRecord

DECAY_RATE: dict[str, float] = {
    "fact": 0.04,
    "pain": 0.025,
    "win": 0.015,
    "decision": 0.008,
    "architecture": 0.004,
    "reflection": 0.02,
}

SEVERITY_MULT: dict[str, float] = {"high": 1.4, "medium": 1.0, "low": 0.7}


class ScoringConfig(BaseModel):
    """Tunable scoring constants. Defaults are the production values."""

    model_config = ConfigDict(extra="forbid")

    decay_rates: dict[str, float] = Field(default_factory=lambda: dict(DECAY_RATE))
    severity_multipliers: dict[str, float] = Field(default_factory=lambda: dict(SEVERITY_MULT))
    access_decay: float = 0.05
    access_weight: float = 0.3
    frequency_weight: float = 0.05
    frequency_cap: float = 0.2
    failure_penalty: float = 0.15
    superseded_penalty: float = 0.6
    min_rank_score: float = 0.15
    active_threshold: float = 0.5
    aging_threshold: float = 0.25
    harmful_failures: int = 2


DEFAULT_SCORING = ScoringConfig()


@dataclass
class RankedMemory:
    memory: MemoryRecord
    score: float


@dataclass
class ReviewItem:
    memory: MemoryRecord
    score: float
    health: HealthStatus
    reason: str


def _days_between(earlier: datetime | None, now: datetime) -> float:
    earlier = as_utc(earlier)
    if earlier is None:
        return 0.0
    return max(0.0, (now - earlier).total_seconds() / 86400.0)


def decay_term(memory: MemoryRecord, now: datetime | None = None, config: ScoringConfig | None = None) -> float:
    """Time decay component exp(-lambda * age_days)."""
    cfg = config or DEFAULT_SCORING
    now = as_utc(now) or utc_now()
    rate = cfg.decay_rates.get(memory.type, DECAY_RATE["fact"])
    return math.exp(-rate * _days_between(memory.created_at, now))


def score_memory(
    memory: MemoryRecord,
    now: datetime | None = None,
    failure_correlations: int = 0,
    config: ScoringConfig | None = None,
) -> float:
    """Relevance score in [0, 1]."""
    cfg = config or DEFAULT_SCORING
    now = as_utc(now) or utc_now()

    decay = decay_term(memory, now, cfg)
    access_boost = 0.0
    if memory.last_accessed is not None:
        access_boost = math.exp(-cfg.access_decay * _days_between(memory.last_accessed, now)) * cfg.access_weight
    frequency = min(cfg.frequency_cap, math.log2(memory.access_count + 1) * cfg.frequency_weight)
    penalty = cfg.failure_penalty * max(0, failure_correlations)
    if memory.superseded_by:
        penalty += cfg.superseded_penalty

    raw = decay + access_boost + frequency - penalty
    raw *= cfg.severity_multipliers.get(memory.severity, 1.0)
    return max(0.0, min(1.0, raw))


def classify_health(
    memory: MemoryRecord,
    score: float,
    failure_correlations: int = 0,
    config: ScoringConfig | None = None,
) -> HealthStatus:
    """Bucket a memory for maintenance tooling."""
    cfg = config or DEFAULT_SCORING
    if memory.superseded_by:
        return "superseded"
    if failure_correlations >= cfg.harmful_failures:
        return "harmful"
    if score >= cfg.active_threshold:
        return "active"
    if score >= cfg.aging_threshold:
        return "aging"
    return "stale"


def rank_memories(
    memories: Iterable[MemoryRecord],
    now: datetime | None = None,
    min_score: float | None = None,
    failures: Mapping[str, int] | None = None,
    config: ScoringConfig | None = None,
) -> list[RankedMemory]:
    """Drop superseded and low-scoring memories, best first."""
    cfg = config or DEFAULT_SCORING
    threshold = cfg.min_rank_score if min_score is None else min_score
    failures = failures or {}
    ranked: list[RankedMemory] = []
    for memory in memories:
        if memory.superseded_by:
            continue
        score = score_memory(memory, now, failures.get(memory.id, 0), cfg)
        if score >= threshold:
            ranked.append(RankedMemory(memory=memory, score=score))
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked


def get_review_queue(
    memories: Iterable[MemoryRecord],
    now: datetime | None = None,
    failures: Mapping[str, int] | None = None,
    config: ScoringConfig | None = None,
) -> list[ReviewItem]:
    """Harmful, stale and superseded memories with a readable reason."""
    cfg = config or DEFAULT_SCORING
    failures = failures or {}
    queue: list[ReviewItem] = []
    for memory in memories:
        failure_count = failures.get(memory.id, 0)
        score = score_memory(memory, now, failure_count, cfg)
        health = classify_health(memory, score, failure_count, cfg)
        if health == "harmful":
            reason = f"Correlated with {failure_count} failures"
        elif health == "stale":
            reason = f"Score {score:.2f} -- below threshold"
        elif health == "superseded":
            reason = f"Superseded by {memory.superseded_by}"
        else:
            continue
        queue.append(ReviewItem(memory=memory, score=score, health=health, reason=reason))
    queue.sort(key=lambda item: item.score)
    return queue


def find_contradictions(
    memory: MemoryRecord,
    others: Iterable[MemoryRecord],
    min_tag_overlap: int = 2,
) -> list[MemoryRecord]:
    """Same-type memories sharing enough tags to possibly disagree."""
    tags = set(memory.tags)
    return [
        other
        for other in others
        if other.id != memory.id
        and other.type == memory.type
        and len(tags & set(other.tags)) >= min_tag_overlap
    ]
