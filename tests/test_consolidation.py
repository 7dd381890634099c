"""Consolidation cycle tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from memory.consolidation.consolidator import Consolidator
from memory.memory_manager import MemoryManager
from memory.stores.sql_store import SQLStore
from memory.types.brain_state import BrainState, MemoryTrace


def build_memory(tmp_path: Path) -> MemoryManager:
    db_path = tmp_path / "brain.db"
    store = SQLStore(db_path=db_path)
    store.create_all()
    return MemoryManager(sql_store=store)


def seed_migration_pains(memory: MemoryManager, count: int = 5) -> list[str]:
    ids = []
    for index in range(count):
        result = memory.store(
            {
                "type": "pain",
                "title": f"Migration step {index} locked the file",
                "content": f"Run {index} of the schema upgrade hung on a held connection.",
                "rule": f"Stop the dev server before running migration step {index}",
                "tags": ["database", "migration"],
            },
            skip_gate=True,
        )
        ids.append(result.record.id)
    return ids


def test_unknown_mode_is_rejected(tmp_path: Path) -> None:
    consolidator = Consolidator(memory_manager=build_memory(tmp_path))

    with pytest.raises(ValueError):
        consolidator.run(mode="dream")


def test_light_run_stores_reflections_once(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    pain_ids = seed_migration_pains(memory)
    consolidator = Consolidator(memory_manager=memory)

    first = consolidator.run()

    reflection = first["reflection"]
    assert first["mode"] == "light"
    assert first["degraded"] == []
    assert reflection["observations"] >= 1
    assert reflection["consolidations"] == 1
    assert reflection["stored"]
    stored = [memory.get_memory(memory_id) for memory_id in reflection["stored"]]
    assert all(record.type == "reflection" for record in stored)
    assert any(record.has_link(pain_ids[0], "related") for record in stored)
    assert "pruning" not in first

    second = consolidator.run()

    assert second["reflection"]["stored"] == []
    assert second["reflection"]["duplicates_skipped"] == len(reflection["stored"])


def test_deep_run_learns_rules_and_applies_plasticity(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    pain_ids = seed_migration_pains(memory)
    memory.save_brain_state(
        BrainState(
            memory_traces={pain_ids[0]: MemoryTrace(count=2, synaptic_strength=1.0)},
            active_traces=[pain_ids[0]],
        )
    )

    result = Consolidator(memory_manager=memory).run(mode="deep")

    assert result["degraded"] == []
    assert result["pruning"]["archived"] == 0
    assert result["rules"]["new"] == 1
    assert memory.load_rules()[0].type == "pain-pattern"
    assert result["cortex"] == {"new_entries": [], "pruned": [], "total": 0}
    assert result["prediction"] == {"signatures_before": 0, "signatures_after": 0}
    assert result["plasticity"] == {"boosted": 1, "records_updated": 1}
    assert memory.get_memory(pain_ids[0]).synaptic_strength == pytest.approx(1.1)
    state = memory.load_brain_state()
    assert state is not None
    assert state.active_traces == []


def test_failing_step_is_reported_as_degraded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    memory = build_memory(tmp_path)
    seed_migration_pains(memory)

    def broken_rules() -> list:
        raise RuntimeError("rules document unreadable")

    monkeypatch.setattr(memory, "load_rules", broken_rules)

    result = Consolidator(memory_manager=memory).run(mode="deep")

    assert result["degraded"] == ["rules"]
    assert result["rules"] == {}
    assert result["reflection"]["stored"]
    assert result["plasticity"] == {"boosted": 0}
