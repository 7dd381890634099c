"""Brain health report across memories, cortex, rules and session state."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from memory.brain_state import find_decayed_memories
from memory.learning.cortex_learner import get_promotion_candidates
from memory.learning.rules import get_rule_promotion_candidates
from memory.schemas import as_utc, utc_now
from memory.scoring import ScoringConfig, classify_health, score_memory
from memory.types.brain_state import BrainState
from memory.types.cortex import LearnedCortexEntry
from memory.types.memory import MemoryRecord
from memory.types.rules import LearnedRule

Grade = Literal["A", "B", "C", "D", "F"]


@dataclass
class MemoryStats:
    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_health: dict[str, int] = field(
        default_factory=lambda: {"active": 0, "aging": 0, "stale": 0, "harmful": 0, "superseded": 0}
    )
    with_links: int = 0
    with_fingerprint: int = 0
    with_quality_score: int = 0
    average_quality: float = 0.0
    average_age_days: float = 0.0


@dataclass
class CortexStats:
    default_entries: int = 0
    learned_entries: int = 0
    promotion_candidates: int = 0
    total_gaps_processed: int = 0


@dataclass
class RuleStats:
    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    promotion_candidates: int = 0
    average_confidence: float = 0.0


@dataclass
class SessionStats:
    message_count: int = 0
    context_phase: str = "early"
    active_traces: int = 0
    significant_events: int = 0
    synaptic_activity_tags: int = 0
    decayed_traces: int = 0


@dataclass
class HealthReport:
    timestamp: datetime
    memories: MemoryStats
    cortex: CortexStats
    rules: RuleStats
    session: SessionStats
    grade: Grade
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


def _grade_for(points: int) -> Grade:
    if points >= 90:
        return "A"
    if points >= 75:
        return "B"
    if points >= 60:
        return "C"
    if points >= 40:
        return "D"
    return "F"


def _compute_grade(
    stats: MemoryStats,
    learned_cortex_count: int,
    state: BrainState | None,
) -> tuple[Grade, list[str], list[str]]:
    issues: list[str] = []
    recommendations: list[str] = []
    points = 100
    total = stats.total

    if total == 0:
        points -= 40
        issues.append("No memories stored")
        recommendations.append("Store pain and win memories as you work")

    stale_ratio = (stats.by_health["stale"] + stats.by_health["superseded"]) / total if total else 0.0
    if stale_ratio > 0.3:
        points -= 20
        issues.append(f"{stale_ratio * 100:.0f}% of memories are stale or superseded")
        recommendations.append("Run memory pruning to archive dead memories")
    elif stale_ratio > 0.15:
        points -= 10
        issues.append(f"{stale_ratio * 100:.0f}% of memories are stale or superseded")

    if stats.by_health["harmful"] > 0:
        points -= 15
        issues.append(f"{stats.by_health['harmful']} harmful memories (correlated with failures)")
        recommendations.append("Review and update harmful memories")

    quality_coverage = stats.with_quality_score / total if total else 0.0
    if quality_coverage < 0.5 and total > 20:
        points -= 10
        issues.append(f"Only {quality_coverage * 100:.0f}% of memories have quality scores")
        recommendations.append("Quality scores are assigned as new memories pass through the gate")

    link_coverage = stats.with_links / total if total else 0.0
    if link_coverage < 0.1 and total > 20:
        points -= 5
        recommendations.append("Memory linking improves as the linker discovers relationships")

    if learned_cortex_count == 0 and total > 50:
        points -= 5
        recommendations.append("Cortex learning is active; gaps will be learned over time")

    if state is None:
        points -= 10
        issues.append("No brain state found")

    return _grade_for(points), issues, recommendations


def generate_health_report(
    memories: Sequence[MemoryRecord],
    state: BrainState | None,
    learned_cortex: Sequence[LearnedCortexEntry],
    learned_rules: Sequence[LearnedRule],
    default_cortex_size: int,
    total_gaps_processed: int = 0,
    failures: Mapping[str, int] | None = None,
    now: datetime | None = None,
    scoring: ScoringConfig | None = None,
    decay_threshold_days: int = 30,
) -> HealthReport:
    now = as_utc(now) or utc_now()
    failures = failures or {}
    stats = MemoryStats(total=len(memories))
    quality_total = 0.0
    age_total = 0.0
    for memory in memories:
        stats.by_type[memory.type] = stats.by_type.get(memory.type, 0) + 1
        failure_count = failures.get(memory.id, 0)
        score = score_memory(memory, now, failure_count, scoring)
        stats.by_health[classify_health(memory, score, failure_count, scoring)] += 1
        if memory.quality_score is not None:
            quality_total += memory.quality_score
            stats.with_quality_score += 1
        age_total += max(0.0, (now - as_utc(memory.created_at)).total_seconds() / 86400.0)
        if memory.links:
            stats.with_links += 1
        if memory.fingerprint:
            stats.with_fingerprint += 1
    if stats.with_quality_score:
        stats.average_quality = quality_total / stats.with_quality_score
    if memories:
        stats.average_age_days = age_total / len(memories)

    rules = RuleStats(total=len(learned_rules))
    for rule in learned_rules:
        rules.by_type[rule.type] = rules.by_type.get(rule.type, 0) + 1
    if learned_rules:
        rules.average_confidence = sum(rule.confidence for rule in learned_rules) / len(learned_rules)
    rules.promotion_candidates = len(get_rule_promotion_candidates(learned_rules))

    cortex = CortexStats(
        default_entries=default_cortex_size,
        learned_entries=len(learned_cortex),
        promotion_candidates=len(get_promotion_candidates(learned_cortex)),
        total_gaps_processed=total_gaps_processed,
    )

    session = SessionStats()
    if state is not None:
        session = SessionStats(
            message_count=state.message_count,
            context_phase=state.context_phase,
            active_traces=len(state.active_traces),
            significant_events=state.significant_events_since_checkpoint,
            synaptic_activity_tags=len(state.synaptic_activity),
            decayed_traces=len(find_decayed_memories(state, decay_threshold_days, now)),
        )

    grade, issues, recommendations = _compute_grade(stats, len(learned_cortex), state)
    return HealthReport(
        timestamp=now,
        memories=stats,
        cortex=cortex,
        rules=rules,
        session=session,
        grade=grade,
        issues=issues,
        recommendations=recommendations,
    )


def _pairs(counts: Mapping[str, int]) -> str:
    return ", ".join(f"{key}: {value}" for key, value in counts.items())


def format_health_report(report: HealthReport) -> str:
    memories = report.memories
    health = memories.by_health
    lines = [f"Brain Health: {report.grade}", "", f"Memories: {memories.total} total"]
    lines.append(f"  Types: {_pairs(memories.by_type)}")
    lines.append(
        f"  Health: active={health['active']}, aging={health['aging']}, "
        f"stale={health['stale']}, superseded={health['superseded']}"
    )
    if memories.average_quality > 0:
        lines.append(f"  Avg quality: {memories.average_quality:.2f}, avg age: {memories.average_age_days:.0f}d")
    lines.append(f"  Linked: {memories.with_links}, fingerprinted: {memories.with_fingerprint}")

    lines += ["", f"Cortex: {report.cortex.default_entries} default + {report.cortex.learned_entries} learned"]
    lines.append(
        f"  Gaps processed: {report.cortex.total_gaps_processed}, "
        f"promotion candidates: {report.cortex.promotion_candidates}"
    )

    lines += ["", f"Rules: {report.rules.total} learned"]
    if report.rules.total:
        lines.append(f"  Types: {_pairs(report.rules.by_type)}")
        lines.append(
            f"  Avg confidence: {report.rules.average_confidence:.2f}, "
            f"promotion candidates: {report.rules.promotion_candidates}"
        )

    lines += ["", f"Session: msg {report.session.message_count}, phase {report.session.context_phase}"]
    lines.append(
        f"  Active traces: {report.session.active_traces}, significant events: {report.session.significant_events}, "
        f"decayed traces: {report.session.decayed_traces}"
    )

    if report.issues:
        lines += ["", "Issues:"] + [f"  - {issue}" for issue in report.issues]
    if report.recommendations:
        lines += ["", "Recommendations:"] + [f"  - {item}" for item in report.recommendations]
    return "\n".join(lines)
