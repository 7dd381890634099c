"""Typed view over the merged YAML configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from memory.consolidation.forgetting import PruneOptions
from memory.consolidation.reflection import ReflectionConfig
from memory.quality_gate import QualityGateOptions
from memory.retrieval import RetrievalConfig
from memory.scoring import ScoringConfig


class PathsSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = "workspace/brain.db"
    activity_log_path: str = "logs/activity.jsonl"


class BrainSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str = "default"


class CortexSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    flush_interval_seconds: float = 300.0
    min_observations: int = 2
    confidence_threshold: float = 0.5
    max_age_days: int = 60
    extra_seed: dict[str, list[str]] = Field(default_factory=dict)


class BrainStateSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    checkpoint_interval: int = 12
    decay_threshold_days: int = 30


class NotifierSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    debounce_seconds: float = 2.0


class PredictionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_threshold: float = 0.6


class BrainSettings(BaseModel):
    """Every configuration section, each with working defaults."""

    model_config = ConfigDict(extra="forbid")

    paths: PathsSettings = Field(default_factory=PathsSettings)
    brain: BrainSection = Field(default_factory=BrainSection)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    quality_gate: QualityGateOptions = Field(default_factory=QualityGateOptions)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    reflection: ReflectionConfig = Field(default_factory=ReflectionConfig)
    pruning: PruneOptions = Field(default_factory=PruneOptions)
    cortex: CortexSettings = Field(default_factory=CortexSettings)
    brain_state: BrainStateSettings = Field(default_factory=BrainStateSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    prediction: PredictionSettings = Field(default_factory=PredictionSettings)

    @classmethod
    def from_mapping(cls, config: dict[str, Any] | None) -> BrainSettings:
        return cls.model_validate(config or {})
