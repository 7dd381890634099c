"""Forgetting and archive tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from memory.consolidation.forgetting import (
    PruneOptions,
    Pruner,
    archive_stats,
    check_capacity,
    preview_prune,
    prune_memories,
    reason_key,
)
from memory.errors import MemoryNotFoundError
from memory.memory_manager import MemoryManager
from memory.stores.sql_store import SQLStore
from memory.types.memory import MemoryRecord

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def build_memory(tmp_path: Path) -> MemoryManager:
    store = SQLStore(db_path=tmp_path / "brain.db")
    store.create_all()
    return MemoryManager(sql_store=store)


def make_memory(memory_id: str, memory_type: str = "fact", **fields) -> MemoryRecord:
    fields.setdefault("created_at", NOW)
    return MemoryRecord(id=memory_id, project_id="default", type=memory_type, title=f"Memory {memory_id}", **fields)


def aging_memories() -> list[MemoryRecord]:
    return [
        make_memory("fresh"),
        make_memory("replaced", superseded_by="fresh"),
        make_memory(
            "stale",
            created_at=NOW - timedelta(days=200),
            last_accessed=NOW - timedelta(days=100),
        ),
        make_memory("old-decision", "decision", created_at=NOW - timedelta(days=200)),
        make_memory("noise", quality_score=0.05),
    ]


def test_capacity_levels() -> None:
    assert check_capacity(500).level == "ok"
    assert check_capacity(800).level == "warning"
    critical = check_capacity(1000)
    assert critical.level == "critical"
    assert critical.should_prune
    assert check_capacity(3, PruneOptions(capacity=4, warning_pct=0.5)).pct == pytest.approx(0.75)


def test_small_stores_are_left_alone() -> None:
    result = prune_memories(aging_memories(), now=NOW)

    assert result.archived == []
    assert len(result.kept) == 5


def test_prune_archives_superseded_stale_and_low_quality() -> None:
    memories = aging_memories()

    result = prune_memories(memories, PruneOptions(min_memory_count=1), now=NOW)

    reasons = {item.memory.id: item.reason for item in result.archived}
    assert reasons["replaced"] == "Superseded by fresh"
    assert reasons["stale"].startswith("Stale: score 0.00, last accessed 100d ago")
    assert reasons["noise"] == "Low quality: 0.05"
    assert [memory.id for memory in result.kept] == ["fresh", "old-decision"]
    assert result.stats.total_before == 5
    assert result.stats.total_after == 2
    assert (result.stats.superseded_count, result.stats.stale_count, result.stats.low_quality_count) == (1, 1, 1)
    assert memories[1].superseded_by == "fresh"


def test_preview_and_archive_stats() -> None:
    options = PruneOptions(min_memory_count=1)
    preview = preview_prune(aging_memories(), options, now=NOW)

    assert preview["would_keep"] == 2
    assert {item["id"] for item in preview["would_archive"]} == {"replaced", "stale", "noise"}

    archived = prune_memories(aging_memories(), options, now=NOW).archived
    stats = archive_stats(archived, total_archived=7, last_pruned=NOW)
    assert stats.by_reason == {"Superseded": 1, "Stale": 1, "Low quality": 1}
    assert stats.total_archived == 7
    assert stats.currently_archived == 3
    assert reason_key("Superseded by mem_1") == "Superseded"


def test_pruner_archives_and_cleans_links(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    old = memory.store(
        {"type": "fact", "title": "Redis eviction policy", "tags": ["caching", "redis"]}, skip_gate=True
    ).record
    new = memory.store(
        {"type": "fact", "title": "Postgres vacuum schedule", "tags": ["database", "maintenance"]}, skip_gate=True
    ).record
    noise = memory.store(
        {"type": "fact", "title": "Frontend build flags", "tags": ["frontend", "build"]},
        skip_gate=True,
        quality_score=0.05,
    ).record
    memory.mark_superseded(old.id, new.id)
    memory.add_link(old.id, new.id, "related")

    pruner = Pruner(memory, PruneOptions(min_memory_count=1))
    assert pruner.capacity().total == 3
    summary = pruner.run()

    assert summary["archived"] == 2
    assert summary["superseded_count"] == 1
    assert summary["low_quality_count"] == 1
    assert summary["links_removed"] >= 1
    assert [record.id for record in memory.list_memories()] == [new.id]
    assert memory.get_memory(new.id).links == []
    assert memory.archive_metadata()["total_archived"] == 2
    assert {item.memory.id for item in memory.list_archive()} == {old.id, noise.id}

    restored = memory.restore_memory(old.id)

    assert restored.superseded_by is None
    assert restored.last_accessed is not None
    assert memory.count_memories() == 2
    with pytest.raises(MemoryNotFoundError):
        memory.get_archived(old.id)
