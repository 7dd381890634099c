"""Prediction-error capture tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from memory.learning.prediction import (
    build_result_event,
    compute_adaptive_threshold,
    create_event_signature,
    create_expectation_model,
    decay_expectation_model,
    error_event,
    estimate_expectedness,
    process_prediction_event,
    prune_expectation_model,
    should_auto_capture,
    task_outcome_event,
    tool_result_event,
    update_expectations,
    user_pattern_event,
)
from memory.types.expectation import ExpectationModel, FrequencyEntry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_event_signatures() -> None:
    assert create_event_signature(error_event("TypeError", "bad call")) == "error::TypeError"
    assert create_event_signature(tool_result_event("pytest", False, "tests failed")) == "tool_result::pytest::failure"
    assert create_event_signature(build_result_event(True, "built")) == "tool_result::build::build::success"
    assert create_event_signature(user_pattern_event("prefers-short-answers", "terse")) == (
        "user_pattern::prefers-short-answers"
    )


def test_unseen_event_is_maximally_surprising() -> None:
    event = error_event("KeyError", "missing key")

    assert estimate_expectedness(event, create_expectation_model(), now=NOW) == 0.0


def test_repeated_event_becomes_expected() -> None:
    event = tool_result_event("pytest", True, "tests passed")
    model = create_expectation_model()
    for _ in range(12):
        model = update_expectations(event, model, NOW)

    expectedness = estimate_expectedness(event, model, session_message_count=10, now=NOW)

    assert model.frequencies["tool_result::pytest::success"].count == 12
    assert model.total_events == 12
    assert expectedness > 0.6
    decision = should_auto_capture(event, expectedness, [], now=NOW)
    assert not decision.capture
    assert decision.encoding_strength == 0.0


def test_adaptive_threshold_tracks_capture_density() -> None:
    quiet = [NOW - timedelta(days=1)]
    steady = [NOW - timedelta(minutes=i) for i in range(5)]
    busy = [NOW - timedelta(minutes=i) for i in range(12)]

    assert compute_adaptive_threshold(quiet, 0.6, NOW) == pytest.approx(0.5)
    assert compute_adaptive_threshold(steady, 0.6, NOW) == pytest.approx(0.6)
    assert compute_adaptive_threshold(busy, 0.6, NOW) == pytest.approx(0.8)
    assert compute_adaptive_threshold([], 0.35, NOW) == pytest.approx(0.3)
    flood = [NOW - timedelta(seconds=i) for i in range(100)]
    assert compute_adaptive_threshold(flood, 0.8, NOW) == pytest.approx(0.85)


def test_encoding_strength_scales_with_surprise() -> None:
    event = tool_result_event("pytest", False, "tests failed")

    assert should_auto_capture(event, 0.0, [], now=NOW).encoding_strength == 1.3
    assert should_auto_capture(event, 0.22, [], now=NOW).encoding_strength == 1.1
    assert should_auto_capture(event, 0.4, [], now=NOW).encoding_strength == 0.9
    severe = error_event("OSError", "disk full", severity="high")
    assert should_auto_capture(severe, 0.4, [], now=NOW).encoding_strength == 1.5


def test_process_event_captures_surprise_and_updates_model() -> None:
    event = error_event("TimeoutError", "Upstream API timed out", tags=["api", "network"], lesson="Retry with backoff")

    outcome = process_prediction_event(event, create_expectation_model(), [], related_task_id="t1", task_title="Sync", now=NOW)

    assert outcome.decision.capture
    assert outcome.signature == "error::TimeoutError"
    assert outcome.model.frequencies["error::TimeoutError"].count == 1
    memory = outcome.memory
    assert memory is not None
    assert memory.candidate.type == "pain"
    assert memory.candidate.rule == "Retry with backoff"
    assert memory.candidate.tags == ["api", "network", "auto-surprise", "error-pattern"]
    assert memory.candidate.severity == "high"
    assert memory.candidate.related_task_id == "t1"
    assert "During task: Sync" in memory.candidate.content
    assert memory.prediction_error == pytest.approx(1.0)
    assert memory.quality_score == pytest.approx(0.8)
    assert memory.synaptic_strength == 1.3


def test_expected_event_still_updates_model() -> None:
    event = tool_result_event("ruff", True, "lint clean")
    model = create_expectation_model()
    for _ in range(20):
        model = update_expectations(event, model, NOW)

    outcome = process_prediction_event(event, model, [], session_message_count=30, now=NOW)

    assert outcome.memory is None
    assert outcome.model.frequencies["tool_result::ruff::success"].count == 21


def test_task_outcome_events() -> None:
    success = task_outcome_event("success", "Ship", "done")
    partial = task_outcome_event("partial", "Ship", "half done")

    assert success.valence == "positive"
    assert success.outcome_class == "success"
    assert partial.valence == "neutral"
    assert partial.outcome_class == "unexpected_success"
    assert partial.description == "Ship: half done"
    outcome = process_prediction_event(partial, create_expectation_model(), [], now=NOW)
    assert outcome.memory is not None
    assert outcome.memory.candidate.type == "win"
    assert "tool:task_completion" in outcome.memory.candidate.tags


def test_decay_forgets_old_signatures() -> None:
    model = ExpectationModel(
        frequencies={
            "error::Old": FrequencyEntry(count=1, last_seen=NOW - timedelta(days=30)),
            "error::Fresh": FrequencyEntry(count=4, last_seen=NOW),
        },
        total_events=5,
    )

    decayed = decay_expectation_model(model, NOW)

    assert list(decayed.frequencies) == ["error::Fresh"]
    assert decayed.frequencies["error::Fresh"].count == 4
    assert decayed.total_events == 5
    assert "error::Old" in model.frequencies


def test_prune_keeps_best_eighty_percent() -> None:
    model = ExpectationModel(
        frequencies={
            f"error::E{i}": FrequencyEntry(count=i + 1, last_seen=NOW - timedelta(days=10 - i)) for i in range(10)
        },
        total_events=55,
    )

    pruned = prune_expectation_model(model, NOW)

    assert len(pruned.frequencies) == 8
    assert "error::E0" not in pruned.frequencies
    assert "error::E9" in pruned.frequencies
