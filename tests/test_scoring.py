"""Relevance scoring tests."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from memory.scoring import (
    ScoringConfig,
    classify_health,
    decay_term,
    find_contradictions,
    get_review_queue,
    rank_memories,
    score_memory,
)
from memory.types.memory import MemoryRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_memory(memory_id: str, age_days: float = 0.0, **fields) -> MemoryRecord:
    fields.setdefault("type", "fact")
    fields.setdefault("title", f"Memory {memory_id}")
    return MemoryRecord(id=memory_id, project_id="default", created_at=NOW - timedelta(days=age_days), **fields)


def test_old_fact_decays_to_stale() -> None:
    memory = make_memory("m1", age_days=100, severity="medium")

    score = score_memory(memory, NOW)

    assert decay_term(memory, NOW) == pytest.approx(math.exp(-4))
    assert score == pytest.approx(math.exp(-4))
    assert classify_health(memory, score) == "stale"


def test_score_never_increases_with_age() -> None:
    ages = [0, 1, 10, 30, 90, 365]
    for memory_type in ("fact", "pain", "win", "decision", "architecture", "reflection"):
        scores = [score_memory(make_memory("m", age, type=memory_type, severity="medium"), NOW) for age in ages]
        assert scores == sorted(scores, reverse=True)


def test_score_stays_in_unit_interval() -> None:
    fresh = make_memory("hot", severity="high", access_count=500, last_accessed=NOW)
    doomed = make_memory("cold", age_days=400, severity="low", superseded_by="m9")

    assert score_memory(fresh, NOW) == 1.0
    assert score_memory(doomed, NOW) == 0.0
    assert 0.0 <= score_memory(make_memory("m", 5), NOW, failure_correlations=10) <= 1.0


def test_access_boost_and_failure_penalty() -> None:
    base = make_memory("m", age_days=40, severity="medium")
    accessed = base.model_copy(update={"last_accessed": NOW - timedelta(days=1), "access_count": 3})

    assert score_memory(accessed, NOW) > score_memory(base, NOW)
    assert score_memory(base, NOW, failure_correlations=1) < score_memory(base, NOW)


def test_architecture_decays_slower_than_fact() -> None:
    fact = make_memory("f", age_days=60, type="fact", severity="medium")
    architecture = make_memory("a", age_days=60, type="architecture", severity="medium")

    assert score_memory(architecture, NOW) > score_memory(fact, NOW)


def test_health_classification() -> None:
    memory = make_memory("m")

    assert classify_health(memory, 0.9) == "active"
    assert classify_health(memory, 0.3) == "aging"
    assert classify_health(memory, 0.1) == "stale"
    assert classify_health(memory, 0.9, failure_correlations=2) == "harmful"
    assert classify_health(memory.model_copy(update={"superseded_by": "m2"}), 0.9) == "superseded"


def test_rank_drops_superseded_and_low_scores() -> None:
    memories = [
        make_memory("fresh", severity="high"),
        make_memory("older", age_days=20, severity="medium"),
        make_memory("ancient", age_days=300, severity="low"),
        make_memory("replaced", severity="high", superseded_by="fresh"),
    ]

    ranked = rank_memories(memories, NOW)

    assert [item.memory.id for item in ranked] == ["fresh", "older"]
    assert ranked[0].score >= ranked[1].score


def test_review_queue_lists_problem_memories() -> None:
    memories = [
        make_memory("fine", severity="high"),
        make_memory("stale", age_days=200),
        make_memory("replaced", superseded_by="fine"),
        make_memory("harmful", severity="high"),
    ]

    queue = get_review_queue(memories, NOW, failures={"harmful": 3})

    by_id = {item.memory.id: item for item in queue}
    assert set(by_id) == {"stale", "replaced", "harmful"}
    assert by_id["replaced"].reason == "Superseded by fine"
    assert by_id["harmful"].reason == "Correlated with 3 failures"


def test_custom_config_changes_rates() -> None:
    config = ScoringConfig(decay_rates={"fact": 0.0})
    memory = make_memory("m", age_days=1000, severity="medium")

    assert score_memory(memory, NOW, config=config) == pytest.approx(1.0)


def test_contradiction_candidates_share_type_and_tags() -> None:
    memory = make_memory("a", tags=["redis", "caching", "config"])
    others = [
        memory,
        make_memory("b", tags=["redis", "caching"]),
        make_memory("c", tags=["redis"]),
        make_memory("d", type="win", tags=["redis", "caching"]),
    ]

    assert [other.id for other in find_contradictions(memory, others)] == ["b"]
    assert [other.id for other in find_contradictions(memory, others, min_tag_overlap=1)] == ["b", "c"]
