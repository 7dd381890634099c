"""Archive models for pruned memories."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from memory.schemas import utc_now
from memory.types.memory import MemoryRecord


class ArchivedMemory(BaseModel):
    memory: MemoryRecord
    reason: str
    archived_at: datetime = Field(default_factory=utc_now)
    score_at_archive: float = 0.0


class ArchiveStats(BaseModel):
    total_archived: int = 0
    currently_archived: int = 0
    last_pruned: datetime | None = None
    by_reason: dict[str, int] = Field(default_factory=dict)
