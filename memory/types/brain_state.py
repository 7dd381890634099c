"""Session-level brain state models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from memory.schemas import utc_now

ContextPhase = Literal["early", "mid", "late"]


class SynapticHit(BaseModel):
    count: int = 0
    last_hit: datetime = Field(default_factory=utc_now)


class MemoryTrace(BaseModel):
    count: int = 0
    last_accessed: datetime | None = None
    synaptic_strength: float = 1.0


class BrainState(BaseModel):
    """Counters that gate reflection and shape retrieval."""

    session_start: datetime = Field(default_factory=utc_now)
    message_count: int = 0
    context_phase: ContextPhase = "early"
    synaptic_activity: dict[str, SynapticHit] = Field(default_factory=dict)
    memory_traces: dict[str, MemoryTrace] = Field(default_factory=dict)
    firing_frequency: dict[str, int] = Field(default_factory=dict)
    active_traces: list[str] = Field(default_factory=list)
    significant_events_since_checkpoint: int = 0
