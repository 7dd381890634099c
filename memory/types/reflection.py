"""Reflection content models, discriminated on ``kind``."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from memory.types.memory import Outcome

ReflectionKind = Literal["prediction", "surprise", "meta-observation", "consolidation"]
PatternType = Literal["recurring-failure", "contradiction", "knowledge-gap", "strength"]
SurpriseDirection = Literal["better", "worse", "as expected"]


class ReflectionBase(BaseModel):
    """Fields shared by every reflection kind."""

    summary: str
    detail: str
    confidence: float = Field(ge=0.0, le=1.0)
    linked_memory_ids: list[str] = Field(default_factory=list)


class PredictionContent(ReflectionBase):
    kind: Literal["prediction"] = "prediction"
    predicted_outcome: Outcome
    basis: str


class SurpriseContent(ReflectionBase):
    kind: Literal["surprise"] = "surprise"
    prediction_id: str = ""
    surprise_score: float
    raw_surprise: float
    direction: SurpriseDirection
    predicted_outcome: Outcome
    actual_outcome: Outcome
    lesson: str


class MetaObservationContent(ReflectionBase):
    kind: Literal["meta-observation"] = "meta-observation"
    pattern_type: PatternType
    affected_tags: list[str] = Field(default_factory=list)


class ConsolidationContent(ReflectionBase):
    kind: Literal["consolidation"] = "consolidation"
    source_memory_ids: list[str] = Field(default_factory=list)
    merged_tags: list[str] = Field(default_factory=list)
    abstracted_rule: str


ReflectionContent = Annotated[
    Union[PredictionContent, SurpriseContent, MetaObservationContent, ConsolidationContent],
    Field(discriminator="kind"),
]


class PredictionContext(BaseModel):
    """What the agent is about to work on."""

    task_title: str
    task_description: str = ""
    workflow_phase: str = ""
    recent_activity: str = ""


class ReflectionDecision(BaseModel):
    reflect: bool
    reason: str
