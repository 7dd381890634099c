"""Memory store tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from memory.errors import MemoryNotFoundError, MemoryValidationError
from memory.memory_manager import MemoryManager
from memory.quality_gate import compute_fingerprint
from memory.retrieval import MemoryRetriever
from memory.stores.sql_store import SQLStore
from memory.types.archive import ArchivedMemory

LOCKED_DB = {
    "type": "pain",
    "title": "Sqlite database locked during migration",
    "content": "Alembic migration hit sqlite database locked error",
    "rule": "Stop the dev server before running migrations",
    "tags": ["database", "sqlite", "migration"],
    "severity": "high",
}

LOCKED_DB_AGAIN = {
    "type": "pain",
    "title": "Migration blocked by locked sqlite file",
    "content": "Alembic migration failed with sqlite database locked",
    "rule": "Stop the dev server before running migrations always",
    "tags": ["database", "sqlite", "migration"],
    "severity": "high",
}


def build_memory(tmp_path: Path) -> MemoryManager:
    db_path = tmp_path / "brain.db"
    store = SQLStore(db_path=db_path)
    store.create_all()
    return MemoryManager(sql_store=store)


def test_store_round_trip_keeps_quality_and_fingerprint(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    result = memory.store(LOCKED_DB)

    assert result.persisted
    assert result.gate_result.action == "accept"
    assert result.record.id.startswith("mem_")

    reopened = MemoryManager(sql_store=SQLStore(db_path=tmp_path / "brain.db"))
    record = reopened.get_memory(result.record.id)
    assert record.title == LOCKED_DB["title"]
    assert record.tags == ["database", "sqlite", "migration"]
    assert record.severity == "high"
    assert record.quality_score == pytest.approx(result.gate_result.quality_score)
    assert record.fingerprint == compute_fingerprint(LOCKED_DB["title"], LOCKED_DB["content"])
    assert record.created_at.tzinfo is not None


def test_store_rejects_exact_duplicate(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    first = memory.store(LOCKED_DB)
    second = memory.store(LOCKED_DB)

    assert second.gate_result.action == "reject"
    assert not second.persisted
    assert first.record.id in second.gate_result.reason
    assert memory.count_memories() == 1


def test_conflicting_pain_supersedes_older_record(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    older = memory.store(LOCKED_DB).record
    newer = memory.store(LOCKED_DB_AGAIN)

    assert newer.gate_result.action == "accept"
    assert newer.superseded == [older.id]
    assert memory.get_memory(older.id).superseded_by == newer.record.id
    assert memory.count_memories() == 2

    reread_old = memory.get_memory(older.id)
    reread_new = memory.get_memory(newer.record.id)
    assert reread_new.has_link(older.id, "similar")
    assert reread_old.has_link(newer.record.id, "similar")

    result = MemoryRetriever(memory).retrieve("sqlite database locked during migration")
    surfaced = [item.memory.id for item in result.pain]
    assert newer.record.id in surfaced
    assert older.id not in surfaced


def test_merge_folds_candidate_into_existing_record(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    existing = memory.store(
        {
            "type": "fact",
            "title": "Redis cache eviction policy",
            "content": "Redis evicts keys with allkeys lru",
            "rule": "Prefer allkeys lru for caches",
            "tags": ["caching", "redis", "performance"],
        }
    ).record

    result = memory.store(
        {
            "type": "fact",
            "title": "Redis cache eviction tuning",
            "content": "Redis evicts keys under maxmemory pressure",
            "rule": "Set maxmemory before enabling eviction",
            "tags": ["caching", "redis", "config"],
        }
    )

    assert result.merged
    assert result.gate_result.action == "merge"
    assert result.record.id == existing.id
    assert memory.count_memories() == 1
    merged = memory.get_memory(existing.id)
    assert "[Updated] Redis evicts keys under maxmemory pressure" in merged.content
    assert merged.rule == "Set maxmemory before enabling eviction"
    assert merged.tags == ["caching", "redis", "performance", "config"]
    assert merged.quality_score == existing.quality_score
    assert merged.fingerprint == existing.fingerprint


def test_tags_are_inferred_when_missing(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    record = memory.store(
        {
            "type": "pain",
            "title": "Docker build broke on deploy",
            "content": "The docker image broke halfway through the pipeline",
            "rule": "Pin the base image before every release",
        }
    ).record

    assert "infrastructure" in record.tags
    assert "deployment" in record.tags
    assert record.severity == "high"


def test_skip_gate_stores_with_given_quality(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    result = memory.store({"type": "fact", "title": "x"}, skip_gate=True, quality_score=0.42)

    assert result.persisted
    assert result.record.quality_score == pytest.approx(0.42)
    assert result.record.fingerprint == compute_fingerprint("x", "")


def test_low_quality_candidate_is_rejected_and_not_written(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    result = memory.store({"type": "fact", "title": "x"})

    assert result.gate_result.action == "reject"
    assert "below minimum" in result.gate_result.reason
    assert memory.count_memories() == 0


def test_add_link_writes_mirror_once(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    first = memory.store({"type": "decision", "title": "Adopt uv for installs"}, skip_gate=True).record
    second = memory.store({"type": "decision", "title": "Drop pipenv"}, skip_gate=True).record

    memory.add_link(second.id, first.id, "supersedes")
    memory.add_link(second.id, first.id, "supersedes")

    source = memory.get_memory(second.id)
    target = memory.get_memory(first.id)
    assert [(link.target_id, link.relationship) for link in source.links] == [(first.id, "supersedes")]
    assert [(link.target_id, link.relationship) for link in target.links] == [(second.id, "superseded_by")]


def test_delete_removes_links_pointing_at_record(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    first = memory.store({"type": "fact", "title": "Queue runs on redis"}, skip_gate=True).record
    second = memory.store({"type": "fact", "title": "Workers poll the queue"}, skip_gate=True).record
    memory.add_link(first.id, second.id, "related")

    memory.delete_memory(second.id)

    assert memory.find_memory(second.id) is None
    assert memory.get_memory(first.id).links == []
    with pytest.raises(MemoryNotFoundError):
        memory.delete_memory(second.id)


def test_unknown_ids_raise_not_found(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    existing = memory.store({"type": "fact", "title": "Present"}, skip_gate=True).record

    with pytest.raises(MemoryNotFoundError) as excinfo:
        memory.get_memory("mem_missing")
    assert excinfo.value.record_id == "mem_missing"
    with pytest.raises(MemoryNotFoundError):
        memory.add_link(existing.id, "mem_missing", "related")
    with pytest.raises(MemoryNotFoundError):
        memory.update_strength("mem_missing", 0.1)
    assert memory.get_memory(existing.id).links == []


def test_invalid_candidates_raise_validation_error(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)

    with pytest.raises(MemoryValidationError):
        memory.store({"type": "rumor", "title": "Heard something"})
    with pytest.raises(MemoryValidationError):
        memory.store({"type": "fact", "title": "   "})
    with pytest.raises(MemoryValidationError):
        memory.store({"type": "fact", "title": "Fine", "priority": 3})
    assert memory.count_memories() == 0


def test_update_memory_validates_fields(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    record = memory.store({"type": "fact", "title": "Old title"}, skip_gate=True).record

    updated = memory.update_memory(record.id, title="New title", tags=["API", "api", "network"])
    assert updated.title == "New title"
    assert updated.tags == ["api", "network"]

    with pytest.raises(MemoryValidationError):
        memory.update_memory(record.id, synaptic_strength=2.0)
    with pytest.raises(MemoryValidationError):
        memory.update_memory(record.id, severity="urgent")


def test_update_strength_is_clamped(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    record = memory.store({"type": "win", "title": "Fast path"}, skip_gate=True).record

    assert memory.update_strength(record.id, 5.0) == pytest.approx(2.0)
    assert memory.update_strength(record.id, -5.0) == pytest.approx(0.3)


def test_archive_and_restore(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    record = memory.store({"type": "fact", "title": "Legacy endpoint"}, skip_gate=True).record
    record = record.model_copy(update={"superseded_by": "mem_newer"})

    moved = memory.archive_memories([ArchivedMemory(memory=record, reason="Superseded by mem_newer")])

    assert moved == 1
    assert memory.count_memories() == 0
    assert [item.memory.id for item in memory.list_archive()] == [record.id]
    assert memory.archive_metadata()["total_archived"] == 1

    restored = memory.restore_memory(record.id)
    assert restored.superseded_by is None
    assert restored.last_accessed is not None
    assert memory.list_archive() == []
    with pytest.raises(MemoryNotFoundError):
        memory.get_archived(record.id)


def test_restore_repairs_links_against_live_records(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    legacy = memory.store({"type": "fact", "title": "Redis cache warmup script"}, skip_gate=True).record
    proxy = memory.store({"type": "pain", "title": "Nginx upstream timeout"}, skip_gate=True).record
    drift = memory.store({"type": "decision", "title": "Terraform state drift policy"}, skip_gate=True).record
    memory.add_link(legacy.id, proxy.id, "similar")
    memory.add_link(legacy.id, drift.id, "related")

    memory.archive_memories([ArchivedMemory(memory=memory.get_memory(legacy.id), reason="Stale: unused")])
    memory.clean_dangling_links()
    memory.delete_memory(drift.id)
    assert not memory.get_memory(proxy.id).has_link(legacy.id, "similar")

    restored = memory.restore_memory(legacy.id)

    assert restored.has_link(proxy.id, "similar")
    assert all(link.target_id != drift.id for link in restored.links)
    assert memory.get_memory(proxy.id).has_link(legacy.id, "similar")


def test_projects_are_isolated() -> None:
    store = SQLStore.in_memory()
    alpha = MemoryManager(sql_store=store, project_id="alpha")
    beta = MemoryManager(sql_store=store, project_id="beta")

    record = alpha.store({"type": "fact", "title": "Alpha only"}, skip_gate=True).record

    assert beta.count_memories() == 0
    assert beta.find_memory(record.id) is None
    assert alpha.count_memories() == 1
