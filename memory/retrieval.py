"""Keyword and tag based memory retrieval."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from memory.brain_state import get_context_phase
from memory.cortex import ATTENTION_PATTERNS, HIGH_SEVERITY_WORDS, MEDIUM_SEVERITY_WORDS, tokenize
from memory.linker import traverse_links_for_retrieval
from memory.scoring import ScoringConfig, rank_memories
from memory.stop_words import STOP_WORDS
from memory.types.brain_state import BrainState, ContextPhase
from memory.types.memory import MemoryRecord, ScoredMemory

logger = logging.getLogger("brain.retrieval")

PAIN_TYPES = frozenset({"pain", "fact"})
OTHER_TYPES = frozenset({"decision", "architecture", "reflection"})
ASSOCIATIVE_SEEDS = 6
ASSOCIATIVE_WEIGHT = 0.5
LINKED_WIN_SCORE = 0.5


class RetrievalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_pain: int = 5
    max_wins: int = 3
    max_other: int = 3
    late_max_pain: int = 2
    late_max_wins: int = 1
    min_prompt_length: int = 5
    min_score: float = 0.15
    session_tag_repeat_threshold: int = 3
    context_phase_mid: int = 20
    context_phase_late: int = 40


@dataclass
class AttentionAlert:
    keyword: str
    message: str


@dataclass
class RetrievalTelemetry:
    query_length: int = 0
    token_count: int = 0
    candidate_count: int = 0
    direct_match_count: int = 0
    associative_match_count: int = 0
    link_traversal_count: int = 0
    fuzzy_fallback: bool = False
    result_count: int = 0
    top_score: float = 0.0
    execution_ms: float = 0.0
    context_phase: ContextPhase = "early"
    hot_tags_triggered: int = 0
    cortex_gaps: list[str] = field(default_factory=list)


@dataclass
class RetrievalResult:
    pain: list[ScoredMemory] = field(default_factory=list)
    wins: list[ScoredMemory] = field(default_factory=list)
    other: list[ScoredMemory] = field(default_factory=list)
    matched_tags: list[str] = field(default_factory=list)
    attention: AttentionAlert | None = None
    context_phase: ContextPhase = "early"
    hot_tags: list[str] = field(default_factory=list)
    gaps: list[str] = field(default_factory=list)
    injection_text: str = ""
    telemetry: RetrievalTelemetry = field(default_factory=RetrievalTelemetry)
    degraded: list[str] = field(default_factory=list)

    @property
    def memory_ids(self) -> list[str]:
        return [item.memory.id for item in (*self.pain, *self.wins, *self.other)]

    def to_dict(self) -> dict[str, Any]:
        def dump(items: list[ScoredMemory]) -> list[dict[str, Any]]:
            return [
                {"id": item.memory.id, "title": item.memory.title, "score": round(item.score, 3), "source": item.source}
                for item in items
            ]

        return {
            "pain": dump(self.pain),
            "wins": dump(self.wins),
            "other": dump(self.other),
            "matched_tags": self.matched_tags,
            "attention": self.attention.message if self.attention else None,
            "context_phase": self.context_phase,
            "hot_tags": self.hot_tags,
            "gaps": self.gaps,
            "injection_text": self.injection_text,
            "degraded": f"degraded: [{', '.join(self.degraded)}]" if self.degraded else None,
        }


def run_attention_filter(query: str, patterns: Mapping[str, str] | None = None) -> AttentionAlert | None:
    lowered = query.lower()
    for keyword, message in (patterns or ATTENTION_PATTERNS).items():
        if keyword in lowered:
            return AttentionAlert(keyword=keyword, message=message)
    return None


def build_tag_index(memories: Sequence[MemoryRecord]) -> dict[str, list[str]]:
    index: dict[str, list[str]] = {}
    for memory in memories:
        for tag in memory.tags:
            ids = index.setdefault(tag, [])
            if memory.id not in ids:
                ids.append(memory.id)
    return index


def amygdala_weight(memory: MemoryRecord) -> float:
    """Severity multiplier applied to match scores."""
    if memory.severity == "high":
        return 2.0
    if memory.severity == "medium":
        return 1.5
    text = memory.text.lower()
    if any(word in text for word in HIGH_SEVERITY_WORDS):
        return 2.0
    if any(word in text for word in MEDIUM_SEVERITY_WORDS):
        return 1.5
    if len(text) > 500:
        return 1.3
    return 1.0


def _fuzzy_words(query: str) -> list[str]:
    return [word for word in query.lower().split() if len(word) > 3 and word not in STOP_WORDS]


def _fuzzy_hit(word: str, memory: MemoryRecord) -> bool:
    return (
        word in memory.title.lower()
        or word in memory.rule.lower()
        or (len(word) > 4 and word in memory.content.lower())
    )


def fuzzy_match(query: str, memories: Sequence[MemoryRecord]) -> tuple[dict[str, float], list[str]]:
    """Substring fallback: title 1.0, rule 0.8, content 0.5."""
    words = _fuzzy_words(query)
    scores: dict[str, float] = {}
    tags: list[str] = []
    for memory in memories:
        title, rule, content = memory.title.lower(), memory.rule.lower(), memory.content.lower()
        if any(word in title for word in words):
            scores[memory.id] = 1.0
        elif any(word in rule for word in words):
            scores[memory.id] = 0.8
        elif any(len(word) > 4 and word in content for word in words):
            scores[memory.id] = 0.5
        else:
            continue
        for tag in memory.tags:
            if tag not in tags:
                tags.append(tag)
    return scores, tags


def find_gaps(
    tokens: Sequence[str],
    cortex: Mapping[str, list[str]],
    tag_index: Mapping[str, list[str]],
    memories: Sequence[MemoryRecord],
) -> list[str]:
    """Query words with no cortex entry that still hit a memory by substring."""
    gaps: list[str] = []
    for word in tokens:
        if len(word) <= 3 or word in STOP_WORDS or word in cortex or word in tag_index:
            continue
        if any(_fuzzy_hit(word, memory) for memory in memories):
            gaps.append(word)
    return gaps


def _pattern_recognition(
    tokens: Sequence[str],
    tag_index: Mapping[str, list[str]],
    cortex: Mapping[str, list[str]],
) -> tuple[dict[str, float], list[str]]:
    scores: dict[str, float] = {}
    matched: list[str] = []
    for word in tokens:
        mapped = list(cortex.get(word, []))
        if word in tag_index and word not in mapped:
            mapped.append(word)
        for tag in mapped:
            if tag not in tag_index:
                continue
            if tag not in matched:
                matched.append(tag)
            for memory_id in tag_index[tag]:
                scores[memory_id] = scores.get(memory_id, 0.0) + 1
    return scores, matched


def _associative_chaining(
    direct: Mapping[str, float],
    matched: list[str],
    tag_index: Mapping[str, list[str]],
    by_id: Mapping[str, MemoryRecord],
) -> tuple[dict[str, float], list[str]]:
    scores = dict(direct)
    all_tags = list(matched)
    neighbor_tags: list[str] = []
    for memory_id in list(direct)[:ASSOCIATIVE_SEEDS]:
        memory = by_id.get(memory_id)
        if memory is None:
            continue
        for tag in memory.tags:
            if tag not in neighbor_tags:
                neighbor_tags.append(tag)
    for tag in neighbor_tags:
        if tag in matched or tag not in tag_index:
            continue
        for memory_id in tag_index[tag]:
            if memory_id not in direct:
                scores[memory_id] = scores.get(memory_id, 0.0) + ASSOCIATIVE_WEIGHT
                if tag not in all_tags:
                    all_tags.append(tag)
    return scores, all_tags


def _scored(memory: MemoryRecord, score: float, matched: set[str], source: str) -> ScoredMemory:
    return ScoredMemory(
        memory=memory,
        score=score,
        matched_tags=[tag for tag in memory.tags if tag in matched],
        source=source,
    )


def format_injection(result: RetrievalResult) -> str:
    """Plain-text block handed to the agent before it starts work."""
    parts: list[str] = []
    if result.attention is not None:
        parts.append(f"WARNING: {result.attention.message}")

    def lines(items: list[ScoredMemory]) -> None:
        for item in items:
            line = f"- #{item.memory.id}: {item.memory.title}"
            if item.memory.rule:
                line += f"\n  -> {item.memory.rule[:200]}"
            parts.append(line)

    if result.pain:
        parts.append("PAIN MEMORY RETRIEVED (auto-cue from your prompt):")
        lines(result.pain)
    if result.wins:
        parts.append("\nWIN MEMORY (you've handled this domain before):")
        lines(result.wins)
    if result.other:
        parts.append("\nRELATED DECISIONS AND INSIGHTS:")
        lines(result.other)
    if result.hot_tags:
        tag_list = ", ".join(f"`{tag}`" for tag in result.hot_tags)
        parts.append(f"\nPATTERN DETECTED: Tags {tag_list} have fired repeatedly. Consider addressing the root cause.")
    return "\n".join(parts)


def retrieve_memories(
    query: str,
    memories: Sequence[MemoryRecord],
    state: BrainState | None = None,
    cortex: Mapping[str, list[str]] | None = None,
    config: RetrievalConfig | None = None,
    now: datetime | None = None,
    failures: Mapping[str, int] | None = None,
    scoring: ScoringConfig | None = None,
    attention_patterns: Mapping[str, str] | None = None,
) -> RetrievalResult:
    """Answer "what do I know that is relevant to this text".

    Superseded and low-scoring memories are dropped up front; the rest are
    matched through the cortex, chained by shared tags, weighted by severity
    and synaptic strength, then split into pain, win and other buckets.
    """
    started = time.perf_counter()
    cfg = config or RetrievalConfig()
    table = cortex if cortex is not None else {}
    message_count = state.message_count if state is not None else 0
    phase = get_context_phase(message_count, cfg.context_phase_mid, cfg.context_phase_late)
    result = RetrievalResult(context_phase=phase)
    result.telemetry.context_phase = phase
    result.telemetry.query_length = len(query)

    if len(query.strip()) < cfg.min_prompt_length or not memories:
        return result

    tokens = tokenize(query)
    result.telemetry.token_count = len(tokens)
    result.attention = run_attention_filter(query, attention_patterns)

    viable = [item.memory for item in rank_memories(memories, now, cfg.min_score, failures, scoring)]
    viable_by_id = {memory.id: memory for memory in viable}
    result.telemetry.candidate_count = len(viable)

    cue_pool = [memory for memory in viable if memory.type != "win"]
    cue_by_id = {memory.id: memory for memory in cue_pool}
    win_pool = [memory for memory in viable if memory.type == "win"]

    tag_index = build_tag_index(cue_pool)
    direct, matched = _pattern_recognition(tokens, tag_index, table)
    direct_count = len(direct)
    result.telemetry.direct_match_count = direct_count

    if not direct:
        result.telemetry.fuzzy_fallback = True
        fuzzy_scores, fuzzy_tags = fuzzy_match(query, cue_pool)
        direct.update(fuzzy_scores)
        for tag in fuzzy_tags:
            if tag not in matched:
                matched.append(tag)

    result.gaps = find_gaps(tokens, table, build_tag_index(viable), viable)
    result.telemetry.cortex_gaps = list(result.gaps)

    if not direct:
        result.injection_text = format_injection(result)
        result.telemetry.execution_ms = (time.perf_counter() - started) * 1000
        return result

    chained, matched = _associative_chaining(direct, matched, tag_index, cue_by_id)
    result.telemetry.associative_match_count = len(chained) - len(direct)

    weighted: dict[str, float] = {}
    for memory_id, score in chained.items():
        memory = cue_by_id.get(memory_id)
        if memory is None:
            continue
        synaptic = memory.synaptic_strength
        if state is not None and memory_id in state.memory_traces:
            synaptic = state.memory_traces[memory_id].synaptic_strength
        weighted[memory_id] = score * amygdala_weight(memory) * synaptic

    additional, traversals = traverse_links_for_retrieval(weighted, cue_by_id)
    result.telemetry.link_traversal_count = traversals
    linked_ids: set[str] = set()
    for memory_id, score in additional.items():
        if score > weighted.get(memory_id, 0.0):
            if memory_id not in weighted:
                linked_ids.add(memory_id)
            weighted[memory_id] = score
        for tag in cue_by_id[memory_id].tags:
            if tag not in matched:
                matched.append(tag)

    late = phase == "late"
    max_pain = cfg.late_max_pain if late else cfg.max_pain
    max_wins = cfg.late_max_wins if late else cfg.max_wins
    matched_set = set(matched)

    ranked = sorted(weighted.items(), key=lambda pair: pair[1], reverse=True)
    for memory_id, score in ranked:
        memory = cue_by_id[memory_id]
        if memory_id in direct:
            source = "direct"
        elif memory_id in linked_ids:
            source = "linked"
        else:
            source = "associative"
        if memory.type in PAIN_TYPES and len(result.pain) < max_pain:
            result.pain.append(_scored(memory, score, matched_set, source))
        elif memory.type in OTHER_TYPES and len(result.other) < cfg.max_other:
            result.other.append(_scored(memory, score, matched_set, source))

    win_index = build_tag_index(win_pool)
    win_scores: dict[str, float] = {}
    for tag in matched:
        for memory_id in win_index.get(tag, []):
            win_scores[memory_id] = win_scores.get(memory_id, 0.0) + 1
    for memory_id, score in sorted(win_scores.items(), key=lambda pair: pair[1], reverse=True)[:max_wins]:
        result.wins.append(_scored(viable_by_id[memory_id], score, matched_set, "dopamine"))

    chosen_wins = {item.memory.id for item in result.wins}
    for item in result.pain:
        for link in item.memory.links:
            if len(result.wins) >= max_wins:
                break
            if link.relationship != "related" or link.target_id in chosen_wins:
                continue
            target = viable_by_id.get(link.target_id)
            if target is None or target.type != "win":
                continue
            result.wins.append(_scored(target, LINKED_WIN_SCORE, matched_set, "dopamine"))
            chosen_wins.add(target.id)

    if state is not None:
        result.hot_tags = [
            tag
            for tag in matched
            if state.firing_frequency.get(tag, 0) + 1 >= cfg.session_tag_repeat_threshold
        ]

    result.matched_tags = matched
    result.injection_text = format_injection(result)
    telemetry = result.telemetry
    telemetry.result_count = len(result.pain) + len(result.wins) + len(result.other)
    telemetry.top_score = ranked[0][1] if ranked else 0.0
    telemetry.hot_tags_triggered = len(result.hot_tags)
    telemetry.execution_ms = (time.perf_counter() - started) * 1000
    logger.debug(
        "retrieved %d memories for %d tokens (fuzzy=%s, gaps=%s)",
        telemetry.result_count,
        telemetry.token_count,
        telemetry.fuzzy_fallback,
        result.gaps,
    )
    return result


class MemoryRetriever:
    """Runs retrieval against the live store with the merged cortex."""

    def __init__(
        self,
        memory_manager: Any,
        config: RetrievalConfig | None = None,
        scoring: ScoringConfig | None = None,
    ) -> None:
        self.memory_manager = memory_manager
        self.config = config or RetrievalConfig()
        self.scoring = scoring

    def retrieve(
        self,
        query: str,
        state: BrainState | None = None,
        failures: Mapping[str, int] | None = None,
    ) -> RetrievalResult:
        memories = self.memory_manager.list_memories()
        if not memories:
            return retrieve_memories(query, [], state, {}, self.config)
        return retrieve_memories(
            query,
            memories,
            state=state,
            cortex=self.memory_manager.merged_cortex(),
            config=self.config,
            failures=failures,
            scoring=self.scoring,
        )
