"""Memory record models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from memory.schemas import utc_now

MemoryType = Literal["fact", "pain", "win", "decision", "architecture", "reflection"]
Severity = Literal["low", "medium", "high"]
Outcome = Literal["success", "partial", "failure"]
LinkRelationship = Literal["similar", "contradicts", "supersedes", "superseded_by", "related"]
HealthStatus = Literal["active", "aging", "stale", "harmful", "superseded"]

MEMORY_TYPES: tuple[str, ...] = ("fact", "pain", "win", "decision", "architecture", "reflection")


def normalize_tags(tags: list[str]) -> list[str]:
    """Lowercase, strip and dedupe tags while keeping first-seen order."""
    seen: list[str] = []
    for tag in tags:
        cleaned = str(tag).strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class MemoryLink(BaseModel):
    """Typed edge from one memory to another."""

    target_id: str
    relationship: LinkRelationship
    created_at: datetime = Field(default_factory=utc_now)


class MemoryCandidate(BaseModel):
    """Caller-supplied input for the write path."""

    model_config = ConfigDict(extra="forbid")

    type: MemoryType
    title: str
    content: str = ""
    rule: str = ""
    tags: list[str] = Field(default_factory=list)
    severity: Severity | None = None
    related_task_id: str | None = None
    surfaced_memory_ids: list[str] = Field(default_factory=list)
    outcome: Outcome | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("content", "rule")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        return value.strip()

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)


class MemoryRecord(BaseModel):
    """Atomic stored unit of experience."""

    id: str
    project_id: str
    type: MemoryType
    title: str
    content: str = ""
    rule: str = ""
    tags: list[str] = Field(default_factory=list)
    severity: Severity = "low"
    synaptic_strength: float = Field(default=1.0, ge=0.3, le=2.0)
    access_count: int = 0
    last_accessed: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    quality_score: float | None = Field(default=None, ge=0.0, le=1.0)
    fingerprint: str | None = None
    links: list[MemoryLink] = Field(default_factory=list)
    superseded_by: str | None = None
    related_task_id: str | None = None
    surfaced_memory_ids: list[str] = Field(default_factory=list)
    outcome: Outcome | None = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.content} {self.rule}"

    def has_link(self, target_id: str, relationship: str) -> bool:
        return any(
            link.target_id == target_id and link.relationship == relationship
            for link in self.links
        )


class ScoredMemory(BaseModel):
    """A memory plus the retrieval score that surfaced it."""

    memory: MemoryRecord
    score: float
    matched_tags: list[str] = Field(default_factory=list)
    source: Literal["direct", "associative", "linked", "dopamine"] = "direct"
