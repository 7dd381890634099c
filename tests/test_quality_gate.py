"""Quality gate tests."""

from __future__ import annotations

import pytest

from memory.quality_gate import (
    QualityGateOptions,
    assess_quality,
    compute_fingerprint,
    content_similarity,
    detect_conflicts,
    evaluate,
    extract_keywords,
    has_contradictory_rule,
    is_duplicate,
)
from memory.stop_words import is_stop_word, remove_stop_words
from memory.types.memory import MemoryCandidate, MemoryRecord


def make_record(memory_id: str, **fields) -> MemoryRecord:
    fields.setdefault("type", "pain")
    record = MemoryRecord(id=memory_id, project_id="default", **fields)
    return record.model_copy(update={"fingerprint": compute_fingerprint(record.title, record.content)})


def test_extract_keywords_drops_stop_words_and_short_words() -> None:
    assert extract_keywords("The build is BROKEN during CI!") == ["broken", "build"]
    assert extract_keywords("") == []


def test_stop_word_helpers() -> None:
    assert is_stop_word("The")
    assert not is_stop_word("pipeline")
    assert remove_stop_words(["the", "Build", "x", "is", "pipeline"]) == ["Build", "pipeline"]


def test_fingerprint_ignores_case_punctuation_and_stop_words() -> None:
    assert compute_fingerprint("Fix the Build!", "Deploy failed!") == compute_fingerprint("fix build", "deploy failed")
    assert compute_fingerprint("Fix build", "x") != compute_fingerprint("Fix deploy", "x")


def test_assess_quality_rewards_specific_actionable_memories() -> None:
    vague = MemoryCandidate(type="fact", title="Thing")
    detailed = MemoryCandidate(
        type="pain",
        title="Pytest fixture leaks sqlite connections in conftest.py",
        content="Session scoped fixture kept sqlite connection open across every test module run",
        rule="Always close the engine in fixture teardown",
        tags=["testing", "database", "sqlite"],
    )

    assert assess_quality(vague) < 0.15
    assert assess_quality(detailed, "high") == pytest.approx(1.0)


def test_duplicate_by_fingerprint() -> None:
    existing = make_record("m1", title="Sqlite database locked", content="Dev server holds the lock")
    candidate = MemoryCandidate(type="pain", title="SQLite database LOCKED", content="dev server holds the lock!")

    check = is_duplicate(candidate, [existing])

    assert check.is_duplicate
    assert check.existing_id == "m1"
    assert check.similarity == 1.0


def test_content_similarity_weights_title_content_and_tags() -> None:
    left = MemoryCandidate(type="fact", title="Redis cache", content="eviction policy", tags=["caching"])
    right = MemoryCandidate(type="fact", title="Redis cache", content="connection pool", tags=["network"])

    assert content_similarity(left, right) == pytest.approx(0.5)


def test_low_quality_is_rejected_before_duplicate_check() -> None:
    existing = make_record("m1", title="x")
    result = evaluate(MemoryCandidate(type="fact", title="x"), [existing])

    assert result.action == "reject"
    assert "below minimum" in result.reason


def test_complementary_pain_and_win_are_both_kept() -> None:
    pain = make_record(
        "p1",
        title="Flaky login test on CI",
        content="Login test times out waiting for the auth mock",
        rule="Stub the auth service in login tests",
        tags=["testing", "authentication", "ci-cd"],
    )
    win = MemoryCandidate(
        type="win",
        title="Stable login suite after mocking auth",
        content="Mocked the auth server with a local fake and login tests pass reliably",
        rule="Use a local fake auth server for login tests",
        tags=["testing", "authentication", "ci-cd"],
    )

    result = evaluate(win, [pain])

    assert result.action == "accept"
    assert [conflict.existing.id for conflict in result.conflicts] == ["p1"]
    assert result.conflicts[0].confidence == pytest.approx(0.5)


def test_contradictory_rules_are_detected() -> None:
    assert has_contradictory_rule("Always rebase before merging", "Never rebase shared branches")
    assert has_contradictory_rule("Use the ORM for writes", "Avoid the ORM for bulk writes")
    assert not has_contradictory_rule("Use the ORM", "Use the ORM for writes")
    assert not has_contradictory_rule("Do", "Don't")


def test_conflicts_need_tag_overlap() -> None:
    existing = make_record(
        "m1",
        title="Sqlite database locked during migration",
        content="Alembic migration hit sqlite database locked error",
        tags=["database", "sqlite"],
    )
    candidate = MemoryCandidate(
        type="pain",
        title="Sqlite database locked during migration again",
        content="Alembic migration hit sqlite database locked error",
        tags=["database", "windows"],
    )

    assert detect_conflicts(candidate, [existing]) == []
    assert detect_conflicts(candidate, [existing], min_tag_overlap=1)


def test_auto_resolve_can_be_disabled() -> None:
    existing = make_record(
        "m1",
        title="Redis cache eviction policy",
        content="Redis evicts keys with allkeys lru",
        tags=["caching", "redis", "performance"],
    )
    candidate = MemoryCandidate(
        type="pain",
        title="Redis cache eviction tuning",
        content="Redis evicts keys under maxmemory pressure",
        rule="Set maxmemory before enabling eviction",
        tags=["caching", "redis", "config"],
    )

    merged = evaluate(candidate, [existing])
    kept = evaluate(candidate, [existing], QualityGateOptions(auto_resolve=False))

    assert merged.action == "merge"
    assert merged.merge_target is existing
    assert kept.action == "accept"
    assert kept.conflicts


def test_options_reject_unknown_keys() -> None:
    with pytest.raises(ValueError):
        QualityGateOptions(min_quality=0.2, strictness="high")
