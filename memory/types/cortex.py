"""Cortex learning models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from memory.schemas import utc_now


class LearnedCortexEntry(BaseModel):
    """A word to topic-tag mapping learned from retrieval gaps."""

    word: str
    tags: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=0.95)
    observation_count: int = 0
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
    promoted: bool = False


class CortexGapObservation(BaseModel):
    """One analysis of a gap word against the store."""

    word: str
    query_text: str
    matched_memory_ids: list[str] = Field(default_factory=list)
    inferred_tags: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class CortexLearnedStore(BaseModel):
    """Persisted learned overlay plus bookkeeping."""

    entries: list[LearnedCortexEntry] = Field(default_factory=list)
    total_gaps_processed: int = 0
    last_updated: datetime = Field(default_factory=utc_now)
