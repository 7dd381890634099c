"""Learned behavioral rules mined from repeated pain and win memories."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from memory.provenance import new_record_id
from memory.schemas import as_utc, utc_now
from memory.types.memory import MemoryRecord
from memory.types.rules import LearnedRule, RuleCandidate, RulePromotionCandidate, RuleType

_KEYWORD_RE = re.compile(r"\b[a-z]{3,}\b")
_ACTIONABLE_RE = re.compile(
    r"\b(always|never|must|should|avoid|use|prefer|ensure|check|verify|run|before|after|instead)\b",
    re.IGNORECASE,
)
MIN_RULE_LENGTH = 10
MAX_RULE_CONFIDENCE = 0.95
NEW_RULE_CONFIDENCE = 0.4

SECTION_BY_TAG: list[tuple[frozenset[str], str]] = [
    (frozenset({"git", "deployment"}), "Coding Rules"),
    (frozenset({"strategy", "validation"}), "Preferences"),
    (frozenset({"memory", "brain"}), "Architecture"),
    (frozenset({"testing", "debugging"}), "Coding Rules"),
    (frozenset({"social", "writing"}), "Direction Capture"),
]
RULE_PREFIX: dict[str, str] = {
    "pain-pattern": "- **Learned (pain):**",
    "win-pattern": "- **Learned (win):**",
    "contradiction-resolution": "- **Learned (resolution):**",
}


@dataclass
class RuleLearning:
    new_rules: list[LearnedRule] = field(default_factory=list)
    reinforced: list[LearnedRule] = field(default_factory=list)
    rules: list[LearnedRule] = field(default_factory=list)


def _keywords(text: str) -> set[str]:
    return set(_KEYWORD_RE.findall(text.lower()))


def _is_actionable(text: str) -> bool:
    return bool(_ACTIONABLE_RE.search(text))


def _group_by_tag_overlap(memories: Sequence[MemoryRecord], min_overlap: int) -> list[list[MemoryRecord]]:
    used: set[str] = set()
    groups: list[list[MemoryRecord]] = []
    ordered = sorted(memories, key=lambda memory: len(memory.tags), reverse=True)
    for seed in ordered:
        if seed.id in used:
            continue
        group = [seed]
        used.add(seed.id)
        seed_tags = set(seed.tags)
        for other in ordered:
            if other.id in used:
                continue
            if len(seed_tags & set(other.tags)) >= min_overlap:
                group.append(other)
                used.add(other.id)
        groups.append(group)
    return groups


def _common_rule(group: Sequence[MemoryRecord], rule_type: RuleType) -> RuleCandidate | None:
    if not group:
        return None
    counts: dict[str, int] = {}
    for memory in group:
        for tag in memory.tags:
            counts[tag] = counts.get(tag, 0) + 1
    needed = -(-len(group) // 2)
    common = [tag for tag, count in counts.items() if count >= needed]
    if not common:
        return None
    rules = [memory.rule for memory in group if len(memory.rule) > MIN_RULE_LENGTH]
    if not rules:
        return None
    best = max(rules, key=lambda rule: len(rule) * (2 if _is_actionable(rule) else 1))
    return RuleCandidate(
        rule=best,
        tags=common,
        source_memory_ids=[memory.id for memory in group],
        confidence=min(0.9, 0.3 + len(group) * 0.15),
        type=rule_type,
    )


def _contradiction_pairs(
    pains: Sequence[MemoryRecord],
    wins: Sequence[MemoryRecord],
    min_overlap: int,
) -> list[tuple[list[MemoryRecord], list[MemoryRecord], list[str]]]:
    pairs = []
    used_wins: set[str] = set()
    for pain in pains:
        pain_tags = set(pain.tags)
        matching = [
            win
            for win in wins
            if win.id not in used_wins and len(pain_tags & set(win.tags)) >= min_overlap
        ]
        if not matching:
            continue
        shared = [tag for tag in pain.tags if any(tag in win.tags for win in matching)]
        pairs.append(([pain], matching, shared))
        used_wins.update(win.id for win in matching)
    return pairs


def _resolution_rule(
    pains: Sequence[MemoryRecord],
    wins: Sequence[MemoryRecord],
    shared_tags: list[str],
) -> RuleCandidate | None:
    win_rules = [win.rule for win in wins if len(win.rule) > MIN_RULE_LENGTH]
    pain_rules = [pain.rule for pain in pains if len(pain.rule) > MIN_RULE_LENGTH]
    if win_rules:
        best = max(win_rules, key=len)
    elif pain_rules:
        best = f"Avoid: {max(pain_rules, key=len)}"
    else:
        return None
    return RuleCandidate(
        rule=best,
        tags=shared_tags,
        source_memory_ids=[m.id for m in pains] + [m.id for m in wins],
        confidence=min(0.85, 0.4 + (len(pains) + len(wins)) * 0.1),
        type="contradiction-resolution",
    )


def extract_rule_candidates(
    memories: Sequence[MemoryRecord],
    min_group_size: int = 3,
    min_tag_overlap: int = 2,
) -> list[RuleCandidate]:
    """Pain patterns, win patterns and pain/win resolutions, most confident first."""
    pains = [m for m in memories if m.type == "pain" and len(m.rule) > MIN_RULE_LENGTH and not m.superseded_by]
    wins = [m for m in memories if m.type == "win" and len(m.rule) > MIN_RULE_LENGTH and not m.superseded_by]
    candidates: list[RuleCandidate] = []

    for group in _group_by_tag_overlap(pains, min_tag_overlap):
        if len(group) >= min_group_size and (candidate := _common_rule(group, "pain-pattern")):
            candidates.append(candidate)
    for group in _group_by_tag_overlap(wins, min_tag_overlap):
        if len(group) >= min_group_size and (candidate := _common_rule(group, "win-pattern")):
            candidates.append(candidate)
    for pain_group, win_group, shared in _contradiction_pairs(pains, wins, min_tag_overlap):
        if candidate := _resolution_rule(pain_group, win_group, shared):
            candidates.append(candidate)

    candidates.sort(key=lambda item: item.confidence, reverse=True)
    return candidates


def find_matching_rule(candidate: RuleCandidate, existing: Sequence[LearnedRule]) -> LearnedRule | None:
    """Same type, two or more shared tags and keyword Jaccard above 0.3."""
    candidate_words = _keywords(candidate.rule)
    for rule in existing:
        if rule.type != candidate.type:
            continue
        if len(set(rule.tags) & set(candidate.tags)) < 2:
            continue
        rule_words = _keywords(rule.rule)
        union = rule_words | candidate_words
        if union and len(rule_words & candidate_words) / len(union) > 0.3:
            return rule
    return None


def learn_rules(
    candidates: Sequence[RuleCandidate],
    existing: Sequence[LearnedRule],
    now: datetime | None = None,
) -> RuleLearning:
    """Reinforce matching rules and create new ones from confident candidates."""
    now = as_utc(now) or utc_now()
    by_id = {rule.id: rule.model_copy(deep=True) for rule in existing}
    result = RuleLearning()

    for candidate in candidates:
        match = find_matching_rule(candidate, list(by_id.values()))
        if match is not None:
            rule = by_id[match.id]
            rule.observation_count += 1
            rule.confidence = min(MAX_RULE_CONFIDENCE, round(rule.confidence + 0.1, 4))
            rule.last_reinforced = now
            for memory_id in candidate.source_memory_ids:
                if memory_id not in rule.source_memory_ids:
                    rule.source_memory_ids.append(memory_id)
            if len(candidate.rule) > len(rule.rule):
                rule.rule = candidate.rule
            if rule not in result.reinforced:
                result.reinforced.append(rule)
        elif candidate.confidence >= NEW_RULE_CONFIDENCE:
            rule = LearnedRule(
                id=new_record_id("rule"),
                rule=candidate.rule,
                tags=list(candidate.tags),
                source_memory_ids=list(candidate.source_memory_ids),
                confidence=candidate.confidence,
                observation_count=1,
                type=candidate.type,
                created_at=now,
                last_reinforced=now,
            )
            by_id[rule.id] = rule
            result.new_rules.append(rule)

    result.rules = list(by_id.values())
    return result


def suggest_section(rule: LearnedRule) -> str:
    tags = set(rule.tags)
    for keys, section in SECTION_BY_TAG:
        if tags & keys:
            return section
    return "Coding Rules"


def format_rule(rule: LearnedRule) -> str:
    return (
        f"{RULE_PREFIX[rule.type]} {rule.rule} "
        f"(confidence: {rule.confidence * 100:.0f}%, {rule.observation_count} observations)"
    )


def get_rule_promotion_candidates(
    rules: Sequence[LearnedRule],
    min_confidence: float = 0.8,
    min_observations: int = 3,
) -> list[RulePromotionCandidate]:
    """Rules confident and reinforced enough to be written into standing guidance."""
    ready = [
        rule
        for rule in rules
        if not rule.promoted and rule.confidence >= min_confidence and rule.observation_count >= min_observations
    ]
    ready.sort(key=lambda rule: rule.confidence, reverse=True)
    return [
        RulePromotionCandidate(rule=rule, section=suggest_section(rule), formatted_rule=format_rule(rule))
        for rule in ready
    ]
