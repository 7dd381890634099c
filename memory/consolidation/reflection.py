"""Metacognitive layer: predictions, surprise, consolidation and reflection triggers.

All functions are pure. Callers turn the returned content into reflection
memories through the memory manager.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from memory.cortex import TOKEN_RE
from memory.quality_gate import compute_fingerprint
from memory.schemas import as_utc, utc_now
from memory.stop_words import STOP_WORDS
from memory.types.brain_state import BrainState
from memory.types.memory import MemoryCandidate, MemoryRecord, Outcome, ScoredMemory, Severity
from memory.types.reflection import (
    ConsolidationContent,
    MetaObservationContent,
    PredictionContent,
    PredictionContext,
    ReflectionContent,
    ReflectionDecision,
    SurpriseContent,
)

OUTCOME_VALUE: dict[str, float] = {"success": 1.0, "partial": 0.5, "failure": 0.0}
PAIN_SEVERITY_WEIGHT: dict[str, float] = {"high": 1.0, "medium": 0.6, "low": 0.3}
MAX_REFLECTION_TAGS = 12


class ReflectionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reflection_interval: int = 8
    min_significant_events: int = 3
    min_memories_for_meta: int = 5
    tag_overlap_threshold: int = 2
    min_surprise_score: float = 0.3
    recent_window_days: int = 7
    min_cluster_size: int = 3


@dataclass
class ReflectionDraft:
    """Candidate fields plus the pre-computed quality and links for a reflection."""

    candidate: MemoryCandidate
    quality_score: float
    fingerprint: str
    linked_memory_ids: list[str] = field(default_factory=list)


def reflection_title(content: ReflectionContent) -> str:
    return f"[{content.kind}] {content.summary}"


def compute_quality_score(content: ReflectionContent) -> float:
    """Confidence, evidence, actionability and summary length."""
    score = content.confidence * 0.35
    score += min(0.25, len(content.linked_memory_ids) * 0.05)

    match content:
        case SurpriseContent():
            score += 0.2 if content.lesson else 0.05
        case ConsolidationContent():
            score += 0.2 if content.abstracted_rule else 0.05
        case _:
            score += 0.15 if len(content.summary) > 20 else 0.05

    length = len(content.summary)
    if 20 <= length <= 200:
        score += 0.2
    elif length >= 10:
        score += 0.1
    return max(0.0, min(1.0, score))


def reflection_severity(content: ReflectionContent) -> Severity:
    match content:
        case SurpriseContent():
            if content.surprise_score >= 0.7:
                return "high"
            if content.surprise_score >= 0.4:
                return "medium"
            return "low"
        case MetaObservationContent():
            if content.pattern_type in {"recurring-failure", "contradiction"}:
                return "high"
            if content.pattern_type == "knowledge-gap":
                return "medium"
            return "low"
        case _:
            return "medium" if content.confidence >= 0.8 else "low"


def reflection_rule(content: ReflectionContent) -> str:
    match content:
        case SurpriseContent():
            return content.lesson
        case MetaObservationContent():
            return content.summary
        case ConsolidationContent():
            return content.abstracted_rule
        case PredictionContent():
            return content.basis
    return ""


def reflection_outcome(content: ReflectionContent) -> Outcome | None:
    match content:
        case PredictionContent():
            return content.predicted_outcome
        case SurpriseContent():
            return content.actual_outcome
    return None


def build_reflection_tags(content: ReflectionContent) -> list[str]:
    tags: list[str] = ["reflection", content.kind]

    def add(tag: str) -> None:
        if tag not in tags:
            tags.append(tag)

    match content:
        case MetaObservationContent():
            add(content.pattern_type)
            for tag in content.affected_tags:
                add(tag)
        case ConsolidationContent():
            for tag in content.merged_tags:
                add(tag)

    for word in TOKEN_RE.findall(content.summary.lower()):
        if len(word) > 4 and word not in STOP_WORDS:
            add(word)
    return tags[:MAX_REFLECTION_TAGS]


def create_reflection(content: ReflectionContent) -> ReflectionDraft:
    """Shape reflection content as a storable memory candidate."""
    title = reflection_title(content)
    candidate = MemoryCandidate(
        type="reflection",
        title=title,
        content=content.detail,
        rule=reflection_rule(content),
        tags=build_reflection_tags(content),
        severity=reflection_severity(content),
        surfaced_memory_ids=list(content.linked_memory_ids),
        outcome=reflection_outcome(content),
    )
    return ReflectionDraft(
        candidate=candidate,
        quality_score=compute_quality_score(content),
        fingerprint=compute_fingerprint(title, content.detail),
        linked_memory_ids=list(content.linked_memory_ids),
    )


def generate_prediction(context: PredictionContext, memories: Sequence[ScoredMemory]) -> PredictionContent:
    """Predict the outcome of upcoming work from relevant pain and win memories."""
    pains = sorted((m for m in memories if m.memory.type == "pain"), key=lambda m: m.score, reverse=True)
    wins = sorted((m for m in memories if m.memory.type == "win"), key=lambda m: m.score, reverse=True)
    total = len(memories)

    risk_signal = sum(m.score * PAIN_SEVERITY_WEIGHT.get(m.memory.severity, 0.3) for m in pains)
    normalized_risk = min(1.0, risk_signal / max(1, total)) if total else 0.0
    confidence_signal = sum(m.score * 0.5 for m in wins)
    normalized_confidence = min(1.0, confidence_signal / max(1, total)) if total else 0.5

    predicted: Outcome
    if total == 0:
        predicted, confidence = "partial", 0.2
    elif normalized_risk > 0.6 and len(pains) > len(wins) * 2:
        predicted = "failure"
        confidence = min(0.9, 0.4 + normalized_risk * 0.4)
    elif normalized_risk > 0.3 or len(pains) >= len(wins):
        predicted = "partial"
        confidence = 0.3 + abs(normalized_risk - normalized_confidence) * 0.3
    else:
        predicted = "success"
        confidence = min(0.9, 0.4 + normalized_confidence * 0.4)

    basis_parts = [f'Pain: "{m.memory.title}" (score {m.score:.2f})' for m in pains[:2]]
    basis_parts += [f'Win: "{m.memory.title}" (score {m.score:.2f})' for m in wins[:2]]
    if total == 0:
        basis_parts.append("No relevant memories found -- prediction based on neutral prior")
    basis = "; ".join(basis_parts)

    linked = [m.memory.id for m in sorted(memories, key=lambda m: m.score, reverse=True)[:6]]
    detail = "\n".join(
        [
            f"Task: {context.task_title}",
            f"Phase: {context.workflow_phase}",
            f"Relevant memories: {total} ({len(pains)} pain, {len(wins)} win)",
            f"Risk signal: {normalized_risk:.2f}, Confidence signal: {normalized_confidence:.2f}",
            basis,
        ]
    )
    return PredictionContent(
        summary=f"Predicting {predicted} for: {context.task_title}",
        detail=detail,
        confidence=min(1.0, confidence),
        linked_memory_ids=linked,
        predicted_outcome=predicted,
        basis=basis,
    )


def detect_surprise(prediction: PredictionContent, actual: Outcome) -> SurpriseContent:
    """Prediction error between the predicted and the actual outcome."""
    predicted_value = OUTCOME_VALUE.get(prediction.predicted_outcome, 0.5)
    actual_value = OUTCOME_VALUE.get(actual, 0.5)
    raw = abs(predicted_value - actual_value)
    surprise = min(1.0, raw * (0.5 + prediction.confidence * 0.5))

    if actual_value > predicted_value:
        direction = "better"
    elif actual_value < predicted_value:
        direction = "worse"
    else:
        direction = "as expected"

    transition = f"({prediction.predicted_outcome} -> {actual})"
    if surprise < 0.3:
        lesson = f"Outcome matched prediction {transition}. No correction needed."
    elif direction == "better":
        lesson = (
            f"Outcome was better than predicted {transition}. "
            "The risk factors identified may be less severe than thought, or the approach found a way around them."
        )
    else:
        lesson = (
            f"Outcome was worse than predicted {transition}. "
            "The confidence signals were misleading. Review pain memories for this domain for missed risks."
        )

    label = "Expected" if direction == "as expected" else f"Surprise ({direction})"
    detail = "\n".join(
        [
            f"Prediction: {prediction.predicted_outcome} (confidence: {prediction.confidence:.2f})",
            f"Actual: {actual}",
            f"Surprise score: {surprise:.2f}",
            f"Direction: {direction}",
            f"Original basis: {prediction.basis}",
        ]
    )
    return SurpriseContent(
        summary=f"{label}: predicted {prediction.predicted_outcome}, got {actual}",
        detail=detail,
        confidence=min(0.95, 0.5 + surprise * 0.4),
        linked_memory_ids=list(prediction.linked_memory_ids),
        surprise_score=surprise,
        raw_surprise=raw,
        direction=direction,
        predicted_outcome=prediction.predicted_outcome,
        actual_outcome=actual,
        lesson=lesson,
    )


def should_reflect(state: BrainState, config: ReflectionConfig | None = None) -> ReflectionDecision:
    """Decide whether to reflect now, with the reason for the decision."""
    cfg = config or ReflectionConfig()
    messages = state.message_count
    events = state.significant_events_since_checkpoint
    if messages < 4:
        return ReflectionDecision(reflect=False, reason="Too early in session (< 4 messages)")

    interval_hit = messages > 0 and messages % cfg.reflection_interval == 0
    enough_events = events >= cfg.min_significant_events
    phase_multiplier = {"mid": 1.0, "early": 0.5}.get(state.context_phase, 0.3)
    traces = len(state.active_traces)

    if interval_hit and enough_events:
        return ReflectionDecision(
            reflect=True, reason=f"Interval hit (msg {messages}) with {events} significant events"
        )
    if enough_events and traces >= 4 and phase_multiplier >= 0.5:
        return ReflectionDecision(
            reflect=True,
            reason=f"{events} significant events + high activity ({traces} traces) in {state.context_phase} phase",
        )
    if events >= cfg.min_significant_events * 2:
        return ReflectionDecision(
            reflect=True, reason=f"High event count ({events}) warrants reflection regardless of interval"
        )
    if interval_hit and phase_multiplier >= 0.5:
        return ReflectionDecision(
            reflect=True, reason=f"Interval hit (msg {messages}) in {state.context_phase} phase"
        )
    return ReflectionDecision(
        reflect=False, reason=f"No trigger: msg {messages}, events {events}, phase {state.context_phase}"
    )


def abstract_rules(rules: Sequence[str]) -> str:
    """Longest rule plus up to two others that add at least two new words."""
    if not rules:
        return ""
    if len(rules) == 1:
        return rules[0]
    ordered = sorted(rules, key=len, reverse=True)
    primary = ordered[0]
    primary_lower = primary.lower()
    supplements: list[str] = []
    for rule in ordered[1:]:
        if len(rule) < 10:
            continue
        novel = [word for word in rule.lower().split() if len(word) > 4 and word not in primary_lower]
        if len(novel) >= 2:
            supplements.append(rule)
    if not supplements:
        return primary
    clipped = [rule if len(rule) <= 150 else rule[:147] + "..." for rule in supplements[:2]]
    return f"{primary} Additionally: {' Additionally: '.join(clipped)}"


def summarize_outcomes(outcomes: Sequence[str]) -> str:
    counts = Counter(outcomes)
    return ", ".join(f"{counts[name]} {name}" for name in ("success", "partial", "failure") if counts[name])


def generate_consolidation(cluster: Sequence[MemoryRecord]) -> ConsolidationContent | None:
    """Abstract a cluster of related memories into one insight."""
    if len(cluster) < 2:
        return None
    counts: Counter[str] = Counter()
    for memory in cluster:
        counts.update(memory.tags)
    threshold = math.ceil(len(cluster) / 2)
    common = [tag for tag, count in counts.items() if count >= threshold]
    if not common:
        return None

    rules = [memory.rule for memory in cluster if memory.rule]
    if rules:
        abstracted = abstract_rules(rules)
    else:
        abstracted = f"Pattern across {len(cluster)} memories in [{', '.join(common[:3])}] domain"
    outcomes = [memory.outcome for memory in cluster if memory.outcome is not None]
    outcome_summary = summarize_outcomes(outcomes) if outcomes else ""

    source_ids = [memory.id for memory in cluster]
    lines = [f"Consolidated from {len(cluster)} memories:"]
    lines += [f"  - {memory.title}" for memory in cluster]
    lines.append(f"Common tags: {', '.join(common)}")
    if outcome_summary:
        lines.append(f"Outcomes: {outcome_summary}")
    lines.append(f"Abstracted rule: {abstracted}")

    return ConsolidationContent(
        summary=f"Consolidated insight: {', '.join(common[:3])} domain ({len(cluster)} sources)",
        detail="\n".join(lines),
        confidence=min(0.9, 0.4 + len(cluster) * 0.1),
        linked_memory_ids=source_ids,
        source_memory_ids=source_ids,
        merged_tags=common,
        abstracted_rule=abstracted,
    )


def filter_recent_memories(
    memories: Sequence[MemoryRecord],
    window_days: int = 7,
    now: datetime | None = None,
) -> list[MemoryRecord]:
    cutoff = (as_utc(now) or utc_now()) - timedelta(days=window_days)
    return [memory for memory in memories if as_utc(memory.created_at) >= cutoff]


def is_duplicate_reflection(content: ReflectionContent, existing: Sequence[MemoryRecord]) -> bool:
    fingerprint = compute_fingerprint(reflection_title(content), content.detail)
    return any(memory.fingerprint == fingerprint for memory in existing)
