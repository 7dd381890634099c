"""Session counters, synaptic tracking and plasticity.

Every function returns a new BrainState; callers persist it through the
memory manager.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from memory.schemas import as_utc, utc_now
from memory.types.brain_state import BrainState, ContextPhase, MemoryTrace, SynapticHit

MAX_MEMORY_TRACES = 500
MAX_SYNAPTIC_ACTIVITY = 500
DECAY_THRESHOLD = 0.05
STALE_ACTIVITY_DAYS = 7


@dataclass
class DecayedMemory:
    memory_id: str
    days_since: int
    access_count: int


def get_context_phase(message_count: int, mid: int = 20, late: int = 40) -> ContextPhase:
    if message_count >= late:
        return "late"
    if message_count >= mid:
        return "mid"
    return "early"


def apply_decay(state: BrainState) -> BrainState:
    """Move every trace strength 10% of the way back to 1.0."""
    updated = state.model_copy(deep=True)
    for trace in updated.memory_traces.values():
        if trace.synaptic_strength != 1.0:
            trace.synaptic_strength = round(trace.synaptic_strength + (1.0 - trace.synaptic_strength) * 0.1, 2)
    return updated


def _prune_traces(traces: dict[str, MemoryTrace]) -> dict[str, MemoryTrace]:
    items = [
        (memory_id, trace)
        for memory_id, trace in traces.items()
        if abs(trace.synaptic_strength - 1.0) > DECAY_THRESHOLD
    ]
    if len(items) > MAX_MEMORY_TRACES:
        items.sort(key=lambda item: item[1].synaptic_strength, reverse=True)
        items = items[:MAX_MEMORY_TRACES]
    return dict(items)


def _prune_activity(activity: dict[str, SynapticHit], now: datetime) -> dict[str, SynapticHit]:
    cutoff = now - timedelta(days=STALE_ACTIVITY_DAYS)
    items = [
        (tag, hit)
        for tag, hit in activity.items()
        if not (hit.count == 1 and as_utc(hit.last_hit) < cutoff)
    ]
    if len(items) > MAX_SYNAPTIC_ACTIVITY:
        items.sort(key=lambda item: item[1].count, reverse=True)
        items = items[:MAX_SYNAPTIC_ACTIVITY]
    return dict(items)


def init_brain_state(existing: BrainState | None, now: datetime | None = None) -> BrainState:
    """Start a session: decay carried-over traces, prune, reset session counters."""
    now = as_utc(now) or utc_now()
    base = apply_decay(existing) if existing is not None else BrainState(session_start=now)
    base.memory_traces = _prune_traces(base.memory_traces)
    base.synaptic_activity = _prune_activity(base.synaptic_activity, now)
    base.session_start = now
    base.message_count = 0
    base.context_phase = "early"
    base.firing_frequency = {}
    base.active_traces = []
    return base


def tick_message_count(state: BrainState, mid: int = 20, late: int = 40) -> BrainState:
    count = state.message_count + 1
    return state.model_copy(update={"message_count": count, "context_phase": get_context_phase(count, mid, late)})


def record_synaptic_activity(state: BrainState, tags: Iterable[str]) -> BrainState:
    """Count tag activations across sessions and within this one."""
    tags = list(tags)
    if not tags:
        return state
    timestamp = utc_now()
    updated = state.model_copy(deep=True)
    for tag in tags:
        previous = updated.synaptic_activity.get(tag)
        updated.synaptic_activity[tag] = SynapticHit(count=(previous.count if previous else 0) + 1, last_hit=timestamp)
        updated.firing_frequency[tag] = updated.firing_frequency.get(tag, 0) + 1
    return updated


def record_memory_traces(state: BrainState, memory_ids: Iterable[str]) -> BrainState:
    """Remember which memories were surfaced this session."""
    memory_ids = list(memory_ids)
    if not memory_ids:
        return state
    timestamp = utc_now()
    updated = state.model_copy(deep=True)
    for memory_id in memory_ids:
        previous = updated.memory_traces.get(memory_id)
        updated.memory_traces[memory_id] = MemoryTrace(
            count=(previous.count if previous else 0) + 1,
            last_accessed=timestamp,
            synaptic_strength=previous.synaptic_strength if previous else 1.0,
        )
        if memory_id not in updated.active_traces:
            updated.active_traces.append(memory_id)
    return updated


def record_significant_event(state: BrainState, count: int = 1) -> BrainState:
    return state.model_copy(
        update={"significant_events_since_checkpoint": state.significant_events_since_checkpoint + count}
    )


def reset_checkpoint(state: BrainState) -> BrainState:
    return state.model_copy(update={"significant_events_since_checkpoint": 0})


def apply_synaptic_plasticity(
    state: BrainState,
    boost: float = 0.1,
    maximum: float = 2.0,
) -> tuple[BrainState, list[str]]:
    """Boost every memory surfaced this session. Returns (state, boosted ids)."""
    if not state.active_traces:
        return state, []
    updated = state.model_copy(deep=True)
    boosted: list[str] = []
    for memory_id in updated.active_traces:
        trace = updated.memory_traces.get(memory_id)
        if trace is None:
            continue
        trace.synaptic_strength = min(maximum, round(trace.synaptic_strength + boost, 2))
        boosted.append(memory_id)
    return updated, boosted


def checkpoint_interval(state: BrainState, interval: int = 12) -> int:
    if state.context_phase == "late":
        return max(1, interval // 2)
    if state.context_phase == "mid":
        return max(1, int(interval * 0.75))
    return interval


def should_checkpoint(state: BrainState, interval: int = 12) -> bool:
    """Checkpoints fire more often later in a session."""
    every = checkpoint_interval(state, interval)
    return state.message_count > 0 and state.message_count % every == 0


def find_decayed_memories(
    state: BrainState,
    threshold_days: int = 30,
    now: datetime | None = None,
) -> list[DecayedMemory]:
    now = as_utc(now) or utc_now()
    decayed: list[DecayedMemory] = []
    for memory_id, trace in state.memory_traces.items():
        if trace.last_accessed is None:
            continue
        days = int((now - as_utc(trace.last_accessed)).total_seconds() // 86400)
        if days >= threshold_days:
            decayed.append(DecayedMemory(memory_id=memory_id, days_since=days, access_count=trace.count))
    decayed.sort(key=lambda item: item.days_since, reverse=True)
    return decayed
