"""Write-path quality gate: dedup, quality scoring and conflict handling."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from memory.provenance import short_digest
from memory.stop_words import STOP_WORDS
from memory.types.memory import MemoryRecord

GateAction = Literal["accept", "merge", "reject"]
ConflictStrategy = Literal["keep_new", "keep_old", "merge"]

_NON_KEYWORD_RE = re.compile(r"[^a-z0-9\s_.-]")
_SPECIFIC_RE = re.compile(
    r"\b[\w-]+\.(py|ts|js|rs|json|toml|md|yaml|yml|cfg)\b|v\d+\.\d+|[A-Z][a-z]+[A-Z]\w+"
)
_ACTIONABLE_RE = re.compile(
    r"\b(always|never|must|should|avoid|use|prefer|ensure|check|verify|run|before|after|instead)\b",
    re.IGNORECASE,
)
_OPPOSING_RULES: tuple[tuple[re.Pattern[str], re.Pattern[str]], ...] = (
    (re.compile(r"\balways\b"), re.compile(r"\bnever\b")),
    (re.compile(r"\buse\b"), re.compile(r"\bavoid\b")),
    (re.compile(r"\bdo\b"), re.compile(r"\bdon'?t\b")),
    (re.compile(r"\bsafe\b"), re.compile(r"\bunsafe\b|dangerous\b")),
    (re.compile(r"\brequired\b"), re.compile(r"\bunnecessary\b|optional\b")),
)


class GateSubject(Protocol):
    type: str
    title: str
    content: str
    rule: str
    tags: list[str]


class QualityGateOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_quality: float = 0.15
    dup_threshold: float = 0.85
    min_tag_overlap: int = 2
    auto_resolve: bool = True


@dataclass
class Conflict:
    existing: MemoryRecord
    confidence: float
    reason: str


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    similarity: float
    existing_id: str | None = None


@dataclass
class ConflictResolution:
    action: Literal["supersede", "skip", "merge"]
    superseded_id: str | None = None
    merged_title: str | None = None
    merged_content: str | None = None
    merged_rule: str | None = None


@dataclass
class GateResult:
    action: GateAction
    reason: str
    quality_score: float
    fingerprint: str
    conflicts: list[Conflict] = field(default_factory=list)
    merge_target: MemoryRecord | None = None
    merged_title: str | None = None
    merged_content: str | None = None
    merged_rule: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "reason": self.reason,
            "quality_score": self.quality_score,
            "fingerprint": self.fingerprint,
            "merge_target": self.merge_target.id if self.merge_target else None,
            "conflicts": [
                {"existing_id": c.existing.id, "confidence": c.confidence, "reason": c.reason}
                for c in self.conflicts
            ],
        }


def extract_keywords(text: str) -> list[str]:
    """Sorted unique keywords: lowercase, punctuation stripped, no stop words."""
    cleaned = _NON_KEYWORD_RE.sub(" ", text.lower())
    words = {word for word in cleaned.split() if len(word) > 2 and word not in STOP_WORDS}
    return sorted(words)


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    union = set_a | set_b
    return len(set_a & set_b) / len(union)


def compute_fingerprint(title: str, content: str) -> str:
    """Stable hash of normalized title and content keywords.

    Title keywords are counted twice so the title dominates the digest.
    """
    title_kw = extract_keywords(title)
    content_kw = extract_keywords(content)
    normalized = "|".join(sorted(title_kw + title_kw + content_kw))
    return short_digest(normalized)


def content_similarity(a: GateSubject, b: GateSubject) -> float:
    title_sim = jaccard_similarity(extract_keywords(a.title), extract_keywords(b.title))
    content_sim = jaccard_similarity(extract_keywords(a.content), extract_keywords(b.content))
    tag_sim = jaccard_similarity(a.tags, b.tags)
    return title_sim * 0.5 + content_sim * 0.3 + tag_sim * 0.2


def is_duplicate(
    candidate: GateSubject,
    existing: Sequence[MemoryRecord],
    threshold: float = 0.85,
) -> DuplicateCheck:
    """Exact fingerprint match first, then fuzzy similarity over live records."""
    fingerprint = compute_fingerprint(candidate.title, candidate.content)
    for memory in existing:
        if memory.fingerprint and memory.fingerprint == fingerprint:
            return DuplicateCheck(is_duplicate=True, similarity=1.0, existing_id=memory.id)

    best_similarity = 0.0
    best_id: str | None = None
    for memory in existing:
        if memory.superseded_by:
            continue
        similarity = content_similarity(candidate, memory)
        if similarity > best_similarity:
            best_similarity = similarity
            best_id = memory.id

    if best_similarity >= threshold:
        return DuplicateCheck(is_duplicate=True, similarity=best_similarity, existing_id=best_id)
    return DuplicateCheck(is_duplicate=False, similarity=best_similarity)


def assess_quality(candidate: GateSubject, severity: str = "low") -> float:
    """Score specificity, actionability and completeness in [0, 1]."""
    score = 0.0
    title_words = extract_keywords(candidate.title)
    content_words = extract_keywords(candidate.content)

    if len(title_words) >= 4:
        score += 0.25
    elif len(title_words) >= 2:
        score += 0.15
    elif len(title_words) == 1:
        score += 0.05

    if _SPECIFIC_RE.search(candidate.title) or _SPECIFIC_RE.search(candidate.content):
        score += 0.10

    rule = candidate.rule.strip()
    if len(rule) > 10:
        score += 0.25
    elif rule:
        score += 0.10

    if _ACTIONABLE_RE.search(candidate.content) or _ACTIONABLE_RE.search(candidate.rule):
        score += 0.10

    if len(content_words) >= 10:
        score += 0.15
    elif len(content_words) >= 4:
        score += 0.10
    elif content_words:
        score += 0.05

    if len(candidate.tags) >= 3:
        score += 0.10
    elif candidate.tags:
        score += 0.05

    if candidate.type in {"pain", "decision", "architecture"}:
        if severity == "high":
            score += 0.05
        elif severity == "medium":
            score += 0.03

    return max(0.0, min(1.0, score))


def _is_complementary(type_a: str, type_b: str) -> bool:
    return {type_a, type_b} == {"pain", "win"}


def has_contradictory_rule(rule_a: str, rule_b: str) -> bool:
    """True when two rules carry opposing directives (always/never, use/avoid...)."""
    if len(rule_a) < 5 or len(rule_b) < 5:
        return False
    a_lower, b_lower = rule_a.lower(), rule_b.lower()
    for left, right in _OPPOSING_RULES:
        if (left.search(a_lower) and right.search(b_lower)) or (
            right.search(a_lower) and left.search(b_lower)
        ):
            return True
    return False


def detect_conflicts(
    candidate: GateSubject,
    existing: Sequence[MemoryRecord],
    min_tag_overlap: int = 2,
) -> list[Conflict]:
    """Live records that overlap enough with the candidate to conflict."""
    conflicts: list[Conflict] = []
    new_keywords = set(extract_keywords(f"{candidate.title} {candidate.content}"))
    new_tags = set(candidate.tags)

    for memory in existing:
        if memory.superseded_by:
            continue
        shared = [tag for tag in memory.tags if tag in new_tags]
        if len(shared) < min_tag_overlap:
            continue

        tag_ratio = len(shared) / max(len(memory.tags), len(candidate.tags))
        kw_similarity = jaccard_similarity(
            new_keywords, extract_keywords(f"{memory.title} {memory.content}")
        )
        confidence = 0.0
        reason = ""
        if memory.type == candidate.type and kw_similarity > 0.4:
            confidence = 0.3 + kw_similarity * 0.4 + tag_ratio * 0.3
            reason = (
                f"Same type ({memory.type}), {len(shared)} shared tags, "
                f"{kw_similarity * 100:.0f}% keyword overlap"
            )
        elif _is_complementary(candidate.type, memory.type):
            confidence = 0.2 + tag_ratio * 0.3
            reason = (
                f"Complementary types ({candidate.type} vs {memory.type}), "
                f"{len(shared)} shared tags -- may resolve"
            )
        elif has_contradictory_rule(candidate.rule, memory.rule):
            confidence = 0.7 + tag_ratio * 0.3
            reason = f"Contradictory rules detected with {len(shared)} shared tags"

        if confidence > 0.25:
            conflicts.append(Conflict(existing=memory, confidence=min(1.0, confidence), reason=reason))

    conflicts.sort(key=lambda item: item.confidence, reverse=True)
    return conflicts


def resolve_conflict(
    candidate: GateSubject,
    existing: MemoryRecord,
    strategy: ConflictStrategy,
) -> ConflictResolution:
    if strategy == "keep_new":
        return ConflictResolution(action="supersede", superseded_id=existing.id)
    if strategy == "keep_old":
        return ConflictResolution(action="skip")

    merged_title = candidate.title if len(candidate.title) > len(existing.title) else existing.title

    old_content = existing.content.strip()
    new_content = candidate.content.strip()
    if old_content and new_content and old_content != new_content:
        merged_content = f"{old_content}\n\n[Updated] {new_content}"
    else:
        merged_content = new_content or old_content

    old_rule = existing.rule.strip()
    new_rule = candidate.rule.strip()
    if old_rule and new_rule and old_rule != new_rule:
        merged_rule = new_rule if len(new_rule) > len(old_rule) else f"{old_rule} (also: {new_rule})"
    else:
        merged_rule = new_rule or old_rule

    return ConflictResolution(
        action="merge",
        superseded_id=existing.id,
        merged_title=merged_title,
        merged_content=merged_content,
        merged_rule=merged_rule,
    )


def infer_strategy(candidate: GateSubject, conflict: Conflict) -> ConflictStrategy | None:
    """Pick an automatic resolution; None means keep both."""
    existing = conflict.existing
    if _is_complementary(candidate.type, existing.type):
        return None
    if conflict.confidence > 0.7 and candidate.type == existing.type:
        return "keep_new"
    if conflict.confidence > 0.5 and candidate.type == existing.type:
        return "merge"
    return None


def evaluate(
    candidate: GateSubject,
    existing: Sequence[MemoryRecord],
    options: QualityGateOptions | None = None,
    severity: str = "low",
) -> GateResult:
    """Decide accept, merge or reject for a candidate against the store."""
    opts = options or QualityGateOptions()
    fingerprint = compute_fingerprint(candidate.title, candidate.content)
    quality = assess_quality(candidate, severity)

    if quality < opts.min_quality:
        return GateResult(
            action="reject",
            reason=f"Quality score {quality:.2f} below minimum {opts.min_quality}",
            quality_score=quality,
            fingerprint=fingerprint,
        )

    duplicate = is_duplicate(candidate, existing, opts.dup_threshold)
    if duplicate.is_duplicate:
        return GateResult(
            action="reject",
            reason=f"Duplicate of {duplicate.existing_id} (similarity: {duplicate.similarity:.2f})",
            quality_score=quality,
            fingerprint=fingerprint,
        )

    conflicts = detect_conflicts(candidate, existing, opts.min_tag_overlap)

    if opts.auto_resolve and conflicts:
        top = conflicts[0]
        strategy = infer_strategy(candidate, top)
        if strategy is not None:
            resolution = resolve_conflict(candidate, top.existing, strategy)
            if resolution.action == "merge":
                return GateResult(
                    action="merge",
                    reason=f"Merging with {top.existing.id}: {top.reason}",
                    quality_score=quality,
                    fingerprint=fingerprint,
                    conflicts=conflicts,
                    merge_target=top.existing,
                    merged_title=resolution.merged_title,
                    merged_content=resolution.merged_content,
                    merged_rule=resolution.merged_rule,
                )
            if resolution.action == "skip":
                return GateResult(
                    action="reject",
                    reason=f"Existing memory {top.existing.id} is preferred: {top.reason}",
                    quality_score=quality,
                    fingerprint=fingerprint,
                    conflicts=conflicts,
                )
            # supersede falls through to accept; the store marks the old record

    return GateResult(
        action="accept",
        reason=(
            f"Accepted with {len(conflicts)} potential conflict(s)"
            if conflicts
            else "Passed all quality checks"
        ),
        quality_score=quality,
        fingerprint=fingerprint,
        conflicts=conflicts,
    )
