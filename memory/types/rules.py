"""Learned behavioral rule models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from memory.schemas import utc_now

RuleType = Literal["pain-pattern", "win-pattern", "contradiction-resolution"]


class RuleCandidate(BaseModel):
    rule: str
    tags: list[str]
    source_memory_ids: list[str]
    confidence: float
    type: RuleType


class LearnedRule(BaseModel):
    """A rule reinforced across several memories."""

    id: str
    rule: str
    tags: list[str] = Field(default_factory=list)
    source_memory_ids: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    observation_count: int = 1
    type: RuleType
    promoted: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    last_reinforced: datetime = Field(default_factory=utc_now)


class RulePromotionCandidate(BaseModel):
    rule: LearnedRule
    section: str
    formatted_rule: str
