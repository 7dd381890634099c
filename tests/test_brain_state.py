"""Brain state tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from memory.brain_state import (
    apply_synaptic_plasticity,
    checkpoint_interval,
    find_decayed_memories,
    get_context_phase,
    init_brain_state,
    record_memory_traces,
    record_significant_event,
    record_synaptic_activity,
    reset_checkpoint,
    should_checkpoint,
    tick_message_count,
)
from memory.types.brain_state import BrainState, MemoryTrace, SynapticHit

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def test_context_phases() -> None:
    assert get_context_phase(0) == "early"
    assert get_context_phase(20) == "mid"
    assert get_context_phase(39) == "mid"
    assert get_context_phase(40) == "late"
    assert get_context_phase(5, mid=5, late=10) == "mid"


def test_tick_moves_through_phases() -> None:
    state = BrainState(message_count=19)

    ticked = tick_message_count(state)

    assert ticked.message_count == 20
    assert ticked.context_phase == "mid"
    assert state.message_count == 19


def test_init_decays_and_prunes_carried_state() -> None:
    existing = BrainState(
        message_count=33,
        context_phase="mid",
        memory_traces={
            "strong": MemoryTrace(count=4, synaptic_strength=1.5),
            "flat": MemoryTrace(count=1, synaptic_strength=1.03),
        },
        synaptic_activity={
            "once": SynapticHit(count=1, last_hit=NOW - timedelta(days=10)),
            "often": SynapticHit(count=3, last_hit=NOW - timedelta(days=10)),
        },
        firing_frequency={"database": 4},
        active_traces=["strong"],
    )

    state = init_brain_state(existing, NOW)

    assert state.memory_traces["strong"].synaptic_strength == pytest.approx(1.45)
    assert "flat" not in state.memory_traces
    assert list(state.synaptic_activity) == ["often"]
    assert state.message_count == 0
    assert state.context_phase == "early"
    assert state.firing_frequency == {}
    assert state.active_traces == []
    assert state.session_start == NOW
    assert existing.memory_traces["strong"].synaptic_strength == 1.5


def test_fresh_state_when_nothing_persisted() -> None:
    state = init_brain_state(None, NOW)

    assert state.memory_traces == {}
    assert state.session_start == NOW


def test_activity_and_traces_accumulate() -> None:
    state = record_synaptic_activity(BrainState(), ["database", "migration"])
    state = record_synaptic_activity(state, ["database"])
    state = record_memory_traces(state, ["m1", "m2"])
    state = record_memory_traces(state, ["m1"])

    assert state.synaptic_activity["database"].count == 2
    assert state.firing_frequency == {"database": 2, "migration": 1}
    assert state.memory_traces["m1"].count == 2
    assert state.active_traces == ["m1", "m2"]
    assert record_synaptic_activity(state, []) is state


def test_plasticity_boosts_active_traces() -> None:
    state = record_memory_traces(BrainState(), ["m1", "m2"])
    state.memory_traces["m2"].synaptic_strength = 1.95

    boosted_state, boosted = apply_synaptic_plasticity(state)

    assert boosted == ["m1", "m2"]
    assert boosted_state.memory_traces["m1"].synaptic_strength == pytest.approx(1.1)
    assert boosted_state.memory_traces["m2"].synaptic_strength == pytest.approx(2.0)
    assert state.memory_traces["m1"].synaptic_strength == 1.0
    idle = BrainState()
    assert apply_synaptic_plasticity(idle) == (idle, [])


def test_significant_events_and_checkpoints() -> None:
    state = record_significant_event(BrainState(), 3)
    assert state.significant_events_since_checkpoint == 3
    assert reset_checkpoint(state).significant_events_since_checkpoint == 0

    assert checkpoint_interval(BrainState()) == 12
    assert checkpoint_interval(BrainState(context_phase="mid")) == 9
    assert checkpoint_interval(BrainState(context_phase="late")) == 6
    assert should_checkpoint(BrainState(message_count=12))
    assert not should_checkpoint(BrainState(message_count=0))
    assert should_checkpoint(BrainState(message_count=27, context_phase="mid"))
    assert not should_checkpoint(BrainState(message_count=44, context_phase="late"))


def test_find_decayed_memories() -> None:
    state = BrainState(
        memory_traces={
            "old": MemoryTrace(count=3, last_accessed=NOW - timedelta(days=45)),
            "older": MemoryTrace(count=1, last_accessed=NOW - timedelta(days=90)),
            "recent": MemoryTrace(count=9, last_accessed=NOW - timedelta(days=2)),
            "never": MemoryTrace(count=0),
        }
    )

    decayed = find_decayed_memories(state, now=NOW)

    assert [(item.memory_id, item.days_since, item.access_count) for item in decayed] == [
        ("older", 90, 1),
        ("old", 45, 3),
    ]
