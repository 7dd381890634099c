"""Typed memory payload models."""

from memory.types.archive import ArchivedMemory, ArchiveStats
from memory.types.brain_state import BrainState, MemoryTrace, SynapticHit
from memory.types.cortex import CortexGapObservation, CortexLearnedStore, LearnedCortexEntry
from memory.types.expectation import ExpectationModel, FrequencyEntry, PredictionEvent
from memory.types.memory import (
    MemoryCandidate,
    MemoryLink,
    MemoryRecord,
    ScoredMemory,
)
from memory.types.reflection import (
    ConsolidationContent,
    MetaObservationContent,
    PredictionContent,
    PredictionContext,
    ReflectionContent,
    SurpriseContent,
)
from memory.types.rules import LearnedRule, RuleCandidate, RulePromotionCandidate

__all__ = [
    "ArchivedMemory",
    "ArchiveStats",
    "BrainState",
    "MemoryTrace",
    "SynapticHit",
    "CortexGapObservation",
    "CortexLearnedStore",
    "LearnedCortexEntry",
    "ExpectationModel",
    "FrequencyEntry",
    "PredictionEvent",
    "MemoryCandidate",
    "MemoryLink",
    "MemoryRecord",
    "ScoredMemory",
    "ConsolidationContent",
    "MetaObservationContent",
    "PredictionContent",
    "PredictionContext",
    "ReflectionContent",
    "SurpriseContent",
    "LearnedRule",
    "RuleCandidate",
    "RulePromotionCandidate",
]
