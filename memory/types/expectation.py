"""Expectation model used for prediction-error auto capture."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from memory.schemas import utc_now
from memory.types.memory import Severity

EventCategory = Literal["error", "tool_result", "user_pattern", "system"]
OutcomeClass = Literal["success", "failure", "unexpected_success", "partial"]
Valence = Literal["positive", "negative", "neutral"]


class PredictionEvent(BaseModel):
    """An observed event that may be surprising enough to remember."""

    category: EventCategory
    description: str
    subcategory: str | None = None
    details: str | None = None
    title: str | None = None
    lesson: str | None = None
    tags: list[str] = Field(default_factory=list)
    severity: Severity | None = None
    valence: Valence | None = None
    error_class: str | None = None
    tool_name: str | None = None
    outcome_class: OutcomeClass | None = None
    pattern_type: str | None = None


class FrequencyEntry(BaseModel):
    count: float = 0.0
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)


class ExpectationModel(BaseModel):
    """Frequency counts keyed by event signature."""

    frequencies: dict[str, FrequencyEntry] = Field(default_factory=dict)
    total_events: int = 0
    last_updated: datetime = Field(default_factory=utc_now)
