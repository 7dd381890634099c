"""Prediction-error capture.

Events are reduced to a coarse signature and counted in an expectation
model. Routine signatures become expected; only events whose expectedness
falls below an adaptive threshold are turned into memories.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from memory.schemas import as_utc, utc_now
from memory.types.expectation import ExpectationModel, FrequencyEntry, PredictionEvent
from memory.types.memory import MemoryCandidate, MemoryType, Severity

DEFAULT_SURPRISE_THRESHOLD = 0.6
MIN_SURPRISE_THRESHOLD = 0.3
MAX_SURPRISE_THRESHOLD = 0.85
DENSITY_WINDOW_HOURS = 4
DENSITY_SOFT_CAP = 8
FREQUENCY_DECAY_RATE = 0.1
MAX_FREQUENCY_ENTRIES = 500
HIGH_SURPRISE_CUTOFF = 0.2
FORGOTTEN_COUNT = 0.5


@dataclass
class CaptureDecision:
    capture: bool
    expectedness: float
    threshold: float
    reason: str
    encoding_strength: float


@dataclass
class SurpriseMemory:
    """Candidate built from a surprising event plus its encoding hints."""

    candidate: MemoryCandidate
    synaptic_strength: float
    quality_score: float
    prediction_error: float


@dataclass
class PredictionOutcome:
    model: ExpectationModel
    decision: CaptureDecision
    memory: SurpriseMemory | None = None
    signature: str = ""


def create_event_signature(event: PredictionEvent) -> str:
    """Coarse class of an event: ``error::TypeError``, ``tool_result::pytest::failure``."""
    parts = [event.category]
    if event.subcategory:
        parts.append(event.subcategory)
    if event.category == "error" and event.error_class:
        parts.append(event.error_class)
    if event.category == "tool_result" and event.tool_name:
        parts.append(event.tool_name)
        if event.outcome_class:
            parts.append(event.outcome_class)
    if event.category == "user_pattern" and event.pattern_type:
        parts.append(event.pattern_type)
    return "::".join(parts)


def create_expectation_model() -> ExpectationModel:
    return ExpectationModel()


def _days_since(moment: datetime, now: datetime) -> float:
    return max(0.0, (now - as_utc(moment)).total_seconds() / 86400.0)


def estimate_expectedness(
    event: PredictionEvent,
    model: ExpectationModel,
    session_message_count: int = 0,
    now: datetime | None = None,
) -> float:
    """0.0 for a never-seen signature, approaching 1.0 for routine ones."""
    entry = model.frequencies.get(create_event_signature(event))
    if entry is None:
        return 0.0
    now = as_utc(now) or utc_now()
    days = _days_since(entry.last_seen, now)
    decayed = entry.count * math.exp(-FREQUENCY_DECAY_RATE * days)
    frequency = min(1.0, math.log2(decayed + 1) / 4)
    proportion = min(1.0, entry.count / model.total_events * 5) if model.total_events > 0 else 0.0

    hours = days * 24
    if hours < 1:
        recency = 0.8
    elif hours < 4:
        recency = 0.5
    elif hours < 24:
        recency = 0.2
    else:
        recency = 0.0
    fatigue = min(0.15, session_message_count * 0.005)

    expectedness = frequency * 0.4 + proportion * 0.15 + recency * 0.3 + fatigue * 0.15
    return min(1.0, max(0.0, expectedness))


def compute_adaptive_threshold(
    recent_created: Sequence[datetime],
    base_threshold: float = DEFAULT_SURPRISE_THRESHOLD,
    now: datetime | None = None,
) -> float:
    """Raise the bar when many memories were captured in the last few hours."""
    now = as_utc(now) or utc_now()
    window = timedelta(hours=DENSITY_WINDOW_HOURS)
    recent = sum(1 for created in recent_created if now - as_utc(created) < window)
    if recent <= 2:
        return max(MIN_SURPRISE_THRESHOLD, base_threshold - 0.1)
    if recent >= DENSITY_SOFT_CAP:
        raise_by = min(0.25, (recent - DENSITY_SOFT_CAP) * 0.05)
        return min(MAX_SURPRISE_THRESHOLD, base_threshold + raise_by)
    return base_threshold


def should_auto_capture(
    event: PredictionEvent,
    expectedness: float,
    recent_created: Sequence[datetime],
    base_threshold: float = DEFAULT_SURPRISE_THRESHOLD,
    now: datetime | None = None,
) -> CaptureDecision:
    threshold = compute_adaptive_threshold(recent_created, base_threshold, now)
    if expectedness >= threshold:
        return CaptureDecision(
            capture=False,
            expectedness=expectedness,
            threshold=threshold,
            reason=f"Expected event ({expectedness:.2f} >= threshold {threshold:.2f})",
            encoding_strength=0.0,
        )
    if event.severity == "high":
        return CaptureDecision(True, expectedness, threshold, "High severity event, always captured", 1.5)

    if expectedness < HIGH_SURPRISE_CUTOFF:
        strength = 1.3
    elif expectedness < threshold * 0.5:
        strength = 1.1
    else:
        strength = 0.9
    return CaptureDecision(
        capture=True,
        expectedness=expectedness,
        threshold=threshold,
        reason=f"Surprising event ({expectedness:.2f} < threshold {threshold:.2f})",
        encoding_strength=strength,
    )


def classify_valence(event: PredictionEvent) -> MemoryType:
    if event.valence == "negative":
        return "pain"
    if event.valence == "positive":
        return "win"
    if event.category == "error":
        return "pain"
    if event.category == "tool_result" and event.outcome_class == "failure":
        return "pain"
    if event.category == "tool_result" and event.outcome_class == "unexpected_success":
        return "win"
    return "fact"


def classify_severity(event: PredictionEvent, expectedness: float) -> Severity:
    if event.severity:
        return event.severity
    if expectedness < 0.1:
        return "high"
    if expectedness < 0.3:
        return "medium"
    return "low"


def create_surprise_memory(
    event: PredictionEvent,
    expectedness: float,
    encoding_strength: float,
    related_task_id: str | None = None,
    task_title: str | None = None,
) -> SurpriseMemory:
    memory_type = classify_valence(event)
    prediction_error = 1 - expectedness

    if event.title:
        title = event.title
    else:
        prefix = {
            "pain": "Unexpected failure",
            "win": "Unexpected success",
        }.get(memory_type, "Unexpected observation")
        title = f"{prefix}: {event.description[:80]}"

    content = [event.description]
    if task_title:
        content.append(f"During task: {task_title}")
    if event.details:
        content.append(event.details)
    content.append(f"Prediction error: {prediction_error:.2f} (expectedness: {expectedness:.2f})")

    rule = ""
    if memory_type in {"pain", "win"} and event.lesson:
        rule = event.lesson
    elif memory_type == "pain":
        rule = f"Watch for: {event.description[:120]}"
    elif memory_type == "win":
        rule = f"Pattern that worked: {event.description[:120]}"

    tags = [*event.tags, "auto-surprise"]
    if event.category == "error":
        tags.append("error-pattern")
    if event.category == "tool_result":
        tags.append(f"tool:{event.tool_name or 'unknown'}")

    candidate = MemoryCandidate(
        type=memory_type,
        title=title,
        content="\n".join(content),
        rule=rule,
        tags=tags,
        severity=classify_severity(event, expectedness),
        related_task_id=related_task_id,
    )
    return SurpriseMemory(
        candidate=candidate,
        synaptic_strength=encoding_strength,
        quality_score=min(0.9, 0.3 + prediction_error * 0.5),
        prediction_error=prediction_error,
    )


def update_expectations(
    event: PredictionEvent,
    model: ExpectationModel,
    now: datetime | None = None,
) -> ExpectationModel:
    """Count one more occurrence of the event's signature."""
    now = as_utc(now) or utc_now()
    signature = create_event_signature(event)
    updated = model.model_copy(deep=True)
    previous = updated.frequencies.get(signature)
    updated.frequencies[signature] = FrequencyEntry(
        count=(previous.count if previous else 0) + 1,
        first_seen=previous.first_seen if previous else now,
        last_seen=now,
    )
    updated.total_events += 1
    updated.last_updated = now
    if len(updated.frequencies) > MAX_FREQUENCY_ENTRIES:
        updated = prune_expectation_model(updated, now)
    return updated


def prune_expectation_model(model: ExpectationModel, now: datetime | None = None) -> ExpectationModel:
    """Keep the best 80% of signatures by a recency and frequency blend."""
    now = as_utc(now) or utc_now()
    scored = []
    for signature, entry in model.frequencies.items():
        recency = math.exp(-0.05 * _days_since(entry.last_seen, now))
        frequency = math.log2(entry.count + 1)
        scored.append((recency * 0.6 + frequency * 0.4, signature, entry))
    scored.sort(key=lambda item: item[0], reverse=True)
    keep = int(len(scored) * 0.8)
    return ExpectationModel(
        frequencies={signature: entry.model_copy() for _, signature, entry in scored[:keep]},
        total_events=model.total_events,
        last_updated=model.last_updated,
    )


def decay_expectation_model(model: ExpectationModel, now: datetime | None = None) -> ExpectationModel:
    """Decay counts by time since last seen, forgetting those under 0.5."""
    now = as_utc(now) or utc_now()
    frequencies: dict[str, FrequencyEntry] = {}
    for signature, entry in model.frequencies.items():
        decayed = entry.count * math.exp(-FREQUENCY_DECAY_RATE * _days_since(entry.last_seen, now))
        if decayed < FORGOTTEN_COUNT:
            continue
        frequencies[signature] = entry.model_copy(update={"count": round(decayed, 2)})
    return ExpectationModel(frequencies=frequencies, total_events=model.total_events, last_updated=now)


def process_prediction_event(
    event: PredictionEvent,
    model: ExpectationModel,
    recent_created: Sequence[datetime],
    session_message_count: int = 0,
    base_threshold: float = DEFAULT_SURPRISE_THRESHOLD,
    related_task_id: str | None = None,
    task_title: str | None = None,
    now: datetime | None = None,
) -> PredictionOutcome:
    """Estimate, decide, always update the model, and build a memory when surprising."""
    expectedness = estimate_expectedness(event, model, session_message_count, now)
    decision = should_auto_capture(event, expectedness, recent_created, base_threshold, now)
    updated = update_expectations(event, model, now)
    memory = None
    if decision.capture:
        memory = create_surprise_memory(
            event,
            expectedness,
            decision.encoding_strength,
            related_task_id=related_task_id,
            task_title=task_title,
        )
    return PredictionOutcome(
        model=updated,
        decision=decision,
        memory=memory,
        signature=create_event_signature(event),
    )


def tool_result_event(
    tool_name: str,
    success: bool,
    description: str,
    details: str | None = None,
    tags: Sequence[str] = (),
    lesson: str | None = None,
    error_class: str | None = None,
) -> PredictionEvent:
    return PredictionEvent(
        category="tool_result",
        tool_name=tool_name,
        outcome_class="success" if success else "failure",
        description=description,
        details=details,
        tags=list(tags),
        lesson=lesson,
        valence="positive" if success else "negative",
        error_class=error_class,
    )


def error_event(
    error_class: str,
    description: str,
    details: str | None = None,
    tags: Sequence[str] = (),
    lesson: str | None = None,
    severity: Severity | None = None,
) -> PredictionEvent:
    return PredictionEvent(
        category="error",
        error_class=error_class,
        description=description,
        details=details,
        tags=list(tags),
        lesson=lesson,
        valence="negative",
        severity=severity,
    )


def task_outcome_event(
    outcome: str,
    task_title: str,
    description: str,
    details: str | None = None,
    tags: Sequence[str] = (),
    lesson: str | None = None,
) -> PredictionEvent:
    """A partial outcome is recorded as an unexpected success with neutral valence."""
    outcome_class = {"success": "success", "failure": "failure"}.get(outcome, "unexpected_success")
    valence = {"success": "positive", "failure": "negative"}.get(outcome, "neutral")
    return PredictionEvent(
        category="tool_result",
        subcategory="task_outcome",
        tool_name="task_completion",
        outcome_class=outcome_class,
        description=f"{task_title}: {description}",
        details=details,
        tags=list(tags),
        lesson=lesson,
        valence=valence,
    )


def user_pattern_event(
    pattern_type: str,
    description: str,
    details: str | None = None,
    tags: Sequence[str] = (),
    valence: str = "neutral",
) -> PredictionEvent:
    return PredictionEvent(
        category="user_pattern",
        pattern_type=pattern_type,
        description=description,
        details=details,
        tags=list(tags),
        valence=valence,
    )


def build_result_event(
    success: bool,
    description: str,
    error_class: str | None = None,
    details: str | None = None,
    tags: Sequence[str] = (),
    lesson: str | None = None,
) -> PredictionEvent:
    return PredictionEvent(
        category="tool_result",
        subcategory="build",
        tool_name="build",
        outcome_class="success" if success else "failure",
        description=description,
        error_class=error_class,
        details=details,
        tags=[*tags, "build", "compilation"],
        lesson=lesson,
        valence="positive" if success else "negative",
    )
