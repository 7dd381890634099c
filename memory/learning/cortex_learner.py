"""Adaptive word-to-tag index learned from retrieval gaps."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from memory.cortex import DEFAULT_CORTEX
from memory.schemas import as_utc, utc_now
from memory.types.cortex import CortexGapObservation, CortexLearnedStore, LearnedCortexEntry
from memory.types.memory import MemoryRecord

MAX_OBSERVED_TAGS = 5
MAX_ENTRY_TAGS = 6
MAX_CONFIDENCE = 0.95


@dataclass
class LearnResult:
    entries: list[LearnedCortexEntry]
    new_entries: list[LearnedCortexEntry] = field(default_factory=list)
    updated_entries: list[LearnedCortexEntry] = field(default_factory=list)

    @property
    def total_entries(self) -> int:
        return len(self.entries)


def observation_confidence(observation_count: int) -> float:
    return min(MAX_CONFIDENCE, 1 - 1 / (observation_count + 1))


def analyze_gaps(
    gaps: Iterable[str],
    query_text: str,
    memories: Sequence[MemoryRecord],
    seed: Mapping[str, list[str]] | None = None,
) -> list[CortexGapObservation]:
    """One observation per gap word that fuzzy-matches at least one memory.

    Title and rule are searched for any word; content only for words longer
    than four characters. Tags kept must appear in at least half the matches.
    """
    table = DEFAULT_CORTEX if seed is None else seed
    now = utc_now()
    observations: list[CortexGapObservation] = []
    for raw in gaps:
        word = raw.lower()
        if not word or word in table:
            continue
        matched = [
            memory
            for memory in memories
            if word in memory.title.lower()
            or word in memory.rule.lower()
            or (len(word) > 4 and word in memory.content.lower())
        ]
        if not matched:
            continue

        counts: Counter[str] = Counter()
        for memory in matched:
            counts.update(memory.tags)
        min_count = max(1, len(matched) // 2)
        significant = [tag for tag, count in counts.most_common() if count >= min_count][:MAX_OBSERVED_TAGS]
        if not significant:
            continue
        observations.append(
            CortexGapObservation(
                word=word,
                query_text=query_text,
                matched_memory_ids=[memory.id for memory in matched],
                inferred_tags=significant,
                timestamp=now,
            )
        )
    return observations


def learn_from_observations(
    observations: Iterable[CortexGapObservation],
    existing: Sequence[LearnedCortexEntry],
    min_observations: int = 2,
) -> LearnResult:
    """Fold observations into learned entries without mutating ``existing``."""
    entries: dict[str, LearnedCortexEntry] = {entry.word: entry.model_copy(deep=True) for entry in existing}
    new_entries: list[LearnedCortexEntry] = []
    updated_entries: list[LearnedCortexEntry] = []

    for observation in observations:
        entry = entries.get(observation.word)
        if entry is None:
            entry = LearnedCortexEntry(
                word=observation.word,
                tags=list(observation.inferred_tags[:MAX_ENTRY_TAGS]),
                confidence=0.0,
                observation_count=1,
                first_seen=observation.timestamp,
                last_seen=observation.timestamp,
            )
            entries[observation.word] = entry
            if min_observations <= 1:
                entry.confidence = observation_confidence(1)
                new_entries.append(entry)
            continue

        entry.observation_count += 1
        entry.last_seen = observation.timestamp
        for tag in observation.inferred_tags:
            if tag not in entry.tags:
                entry.tags.append(tag)
        entry.tags = entry.tags[:MAX_ENTRY_TAGS]
        entry.confidence = observation_confidence(entry.observation_count)

        if entry.observation_count == min_observations:
            if entry not in new_entries:
                new_entries.append(entry)
        elif entry not in updated_entries and entry not in new_entries:
            updated_entries.append(entry)

    return LearnResult(entries=list(entries.values()), new_entries=new_entries, updated_entries=updated_entries)


def merge_cortex(
    seed: Mapping[str, list[str]],
    learned: Iterable[LearnedCortexEntry],
    confidence_threshold: float = 0.5,
) -> dict[str, list[str]]:
    """Seed table plus confident, unpromoted learned entries. Idempotent."""
    merged = {word: list(tags) for word, tags in seed.items()}
    for entry in learned:
        if entry.promoted or entry.confidence < confidence_threshold:
            continue
        tags = merged.setdefault(entry.word, [])
        for tag in entry.tags:
            if tag not in tags:
                tags.append(tag)
    return merged


def get_promotion_candidates(
    entries: Iterable[LearnedCortexEntry],
    min_confidence: float = 0.8,
    min_observations: int = 5,
) -> list[LearnedCortexEntry]:
    candidates = [
        entry
        for entry in entries
        if not entry.promoted
        and entry.confidence >= min_confidence
        and entry.observation_count >= min_observations
    ]
    return sorted(candidates, key=lambda entry: entry.observation_count, reverse=True)


def prune_stale_entries(
    entries: Iterable[LearnedCortexEntry],
    max_age_days: int = 60,
    now: datetime | None = None,
) -> tuple[list[LearnedCortexEntry], list[LearnedCortexEntry]]:
    """Split entries into (kept, pruned). Promoted entries are always kept."""
    cutoff = (as_utc(now) or utc_now()) - timedelta(days=max_age_days)
    kept: list[LearnedCortexEntry] = []
    pruned: list[LearnedCortexEntry] = []
    for entry in entries:
        if not entry.promoted and as_utc(entry.last_seen) < cutoff:
            pruned.append(entry)
        else:
            kept.append(entry)
    return kept, pruned


def create_empty_cortex_store() -> CortexLearnedStore:
    return CortexLearnedStore()
