"""Collaborator surface of the brain: store, retrieve, predict, maintain."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from core.activity_logger import ActivityLogger
from core.event_bus import DebouncedNotifier
from core.settings import BrainSettings
from core.zones import DegradationReport, ZoneOutcome
from memory.brain_state import (
    init_brain_state,
    record_memory_traces,
    record_significant_event,
    record_synaptic_activity,
    reset_checkpoint,
    should_checkpoint,
    tick_message_count,
)
from memory.consolidation.consolidator import Consolidator
from memory.consolidation.forgetting import Pruner
from memory.consolidation.reflection import create_reflection, detect_surprise, generate_prediction, should_reflect
from memory.health import HealthReport, generate_health_report
from memory.learning.continual_learning import CortexLearningLoop
from memory.learning.prediction import PredictionOutcome, process_prediction_event, task_outcome_event
from memory.memory_manager import MemoryManager, StoreResult
from memory.retrieval import MemoryRetriever, RetrievalResult
from memory.types.brain_state import BrainState
from memory.types.expectation import PredictionEvent
from memory.types.memory import MemoryCandidate, Outcome
from memory.types.reflection import PredictionContent, PredictionContext, SurpriseContent

logger = logging.getLogger("brain.service")

SIGNIFICANT_TYPES = frozenset({"pain", "win", "decision", "architecture"})


@dataclass
class PredictionResult:
    prediction: PredictionContent
    record_id: str | None = None
    degraded: list[str] = field(default_factory=list)


@dataclass
class OutcomeResult:
    surprise: SurpriseContent | None = None
    surprise_record_id: str | None = None
    captured_record_id: str | None = None
    degraded: list[str] = field(default_factory=list)


@dataclass
class CapturedEvent:
    outcome: PredictionOutcome
    record_id: str | None = None


class BrainService:
    """Runs each primary operation and its degradable side effects."""

    def __init__(
        self,
        memory_manager: MemoryManager,
        settings: BrainSettings | None = None,
        activity_logger: ActivityLogger | None = None,
        notifier: DebouncedNotifier | None = None,
        cortex_loop: CortexLearningLoop | None = None,
    ) -> None:
        self.memory_manager = memory_manager
        self.settings = settings or BrainSettings()
        self.activity_logger = activity_logger
        self.notifier = notifier
        self.cortex_loop = cortex_loop or CortexLearningLoop(
            memory_manager,
            flush_interval_seconds=self.settings.cortex.flush_interval_seconds,
            min_observations=self.settings.cortex.min_observations,
        )
        self.retriever = MemoryRetriever(memory_manager, self.settings.retrieval, self.settings.scoring)
        self.pruner = Pruner(memory_manager, self.settings.pruning, self.settings.scoring)
        self.consolidator = Consolidator(
            memory_manager,
            cortex_loop=self.cortex_loop,
            reflection=self.settings.reflection,
            pruning=self.settings.pruning,
            scoring=self.settings.scoring,
            cortex_max_age_days=self.settings.cortex.max_age_days,
        )
        self._last_prediction: PredictionResult | None = None
        self._last_context: PredictionContext | None = None

    # ── write path ───────────────────────────────────────────────

    def store(
        self,
        candidate: MemoryCandidate | Mapping[str, Any],
        skip_gate: bool = False,
        quality_score: float | None = None,
    ) -> StoreResult:
        """Gate and persist a memory, then run logging, state, reflection and capacity zones."""
        self._poll_notifier()
        result = self.memory_manager.store(candidate, skip_gate=skip_gate, quality_score=quality_score)
        report = DegradationReport()
        for label in result.degraded:
            report.add(ZoneOutcome(value=None, degraded=True, label=label))

        record = result.record
        action = result.gate_result.action
        report.run(
            "activity",
            lambda: self._log(f"memory.{action}", f"{action} {record.type}: {record.title}", memory_id=record.id),
            None,
        )
        if result.persisted:
            report.run("brain_state", lambda: self._note_write(record.type, record.tags), None)
            report.run("reflection", self._maybe_reflect, None)
            report.run("capacity", self._check_capacity, None)
            self._notify("memories", f"{action} {record.type} {record.id}")
        report.run("cortex", self._flush_stale_cortex, None)

        result.degraded = report.degraded_zones
        if report.degraded:
            logger.warning("store %s finished %s", record.id, report.annotation)
        return result

    def _note_write(self, memory_type: str, tags: list[str]) -> None:
        state = self._current_state()
        state = record_synaptic_activity(state, tags)
        if memory_type in SIGNIFICANT_TYPES:
            state = record_significant_event(state)
        self.memory_manager.save_brain_state(state)

    def _maybe_reflect(self) -> dict[str, Any] | None:
        state = self.memory_manager.load_brain_state()
        if state is None:
            return None
        decision = should_reflect(state, self.settings.reflection)
        if not decision.reflect:
            return None
        logger.info("reflection triggered: %s", decision.reason)
        results = self.consolidator.reflect()
        self.memory_manager.save_brain_state(reset_checkpoint(state))
        self._log("reflection", decision.reason, stored=results.get("stored", []))
        return results

    def _check_capacity(self) -> dict[str, Any] | None:
        status = self.pruner.capacity()
        if not status.should_prune:
            return None
        logger.info("capacity %s (%d/%d), pruning", status.level, status.total, status.capacity)
        pruned = self.pruner.run()
        if pruned["archived"]:
            self._notify("memory_archive", f"archived {pruned['archived']} memories")
        return pruned

    # ── read path ────────────────────────────────────────────────

    def retrieve(self, query: str, failures: Mapping[str, int] | None = None) -> RetrievalResult:
        """Retrieve relevant memories and record what was surfaced."""
        self._poll_notifier()
        report = DegradationReport()
        state = report.run("brain_state", self._tick, None)
        result = self.retriever.retrieve(query, state, failures)

        surfaced = result.memory_ids
        if state is not None:
            report.run("brain_state", lambda: self._note_read(state, result.matched_tags, surfaced), None)
        if surfaced:
            report.run("access", lambda: self.memory_manager.increment_access(surfaced), 0)
        report.run("cortex", lambda: self._queue_gaps(result.gaps, query), None)
        report.run(
            "activity",
            lambda: self._log("retrieval", f"{len(surfaced)} memories for {len(result.matched_tags)} tags", ids=surfaced),
            None,
        )
        result.degraded = report.degraded_zones
        return result

    def _tick(self) -> BrainState:
        state = tick_message_count(
            self._current_state(),
            self.settings.retrieval.context_phase_mid,
            self.settings.retrieval.context_phase_late,
        )
        self.memory_manager.save_brain_state(state)
        return state

    def _note_read(self, state: BrainState, tags: list[str], surfaced: list[str]) -> None:
        state = record_memory_traces(record_synaptic_activity(state, tags), surfaced)
        if should_checkpoint(state, self.settings.brain_state.checkpoint_interval):
            self._log("checkpoint", f"message {state.message_count}", phase=state.context_phase)
        self.memory_manager.save_brain_state(state)

    def _queue_gaps(self, gaps: list[str], query: str) -> None:
        self.cortex_loop.enqueue(gaps, query)
        self._flush_stale_cortex()

    def _flush_stale_cortex(self) -> None:
        learned = self.cortex_loop.flush_if_stale()
        if learned is not None and learned.new_entries:
            self._notify("cortex_learned", f"learned {len(learned.new_entries)} cortex words")

    # ── prediction and outcomes ──────────────────────────────────

    def predict(self, context: PredictionContext | Mapping[str, Any]) -> PredictionResult:
        """Predict the outcome of upcoming work and store the prediction as a reflection."""
        if not isinstance(context, PredictionContext):
            context = PredictionContext.model_validate(dict(context))
        query = f"{context.task_title} {context.task_description}".strip()
        retrieved = self.retriever.retrieve(query, self.memory_manager.load_brain_state())
        relevant = [*retrieved.pain, *retrieved.wins, *retrieved.other]
        prediction = generate_prediction(context, relevant)

        report = DegradationReport()
        record_id = report.run("reflection", lambda: self._store_reflection(prediction), None)
        result = PredictionResult(prediction=prediction, record_id=record_id, degraded=report.degraded_zones)
        self._last_prediction = result
        self._last_context = context
        return result

    def record_outcome(
        self,
        outcome: Outcome,
        prediction: PredictionContent | None = None,
        description: str = "",
        tags: list[str] | None = None,
        related_task_id: str | None = None,
    ) -> OutcomeResult:
        """Measure surprise against the prediction and feed the outcome to the expectation model."""
        report = DegradationReport()
        result = OutcomeResult()
        if prediction is None and self._last_prediction is not None:
            prediction = self._last_prediction.prediction
        if prediction is not None:
            surprise = detect_surprise(prediction, outcome)
            if self._last_prediction is not None and self._last_prediction.prediction is prediction:
                surprise.prediction_id = self._last_prediction.record_id or ""
            result.surprise = surprise
            if surprise.surprise_score >= self.settings.reflection.min_surprise_score:
                result.surprise_record_id = report.run("reflection", lambda: self._store_reflection(surprise), None)

        task_title = self._last_context.task_title if self._last_context else "task"
        event = task_outcome_event(outcome, task_title, description or outcome, tags=tags or [])
        captured = report.run(
            "prediction",
            lambda: self.process_event(event, related_task_id=related_task_id, task_title=task_title),
            None,
        )
        if captured is not None:
            result.captured_record_id = captured.record_id
        report.run("activity", lambda: self._log("outcome", f"{task_title}: {outcome}"), None)
        result.degraded = report.degraded_zones
        return result

    def process_event(
        self,
        event: PredictionEvent,
        related_task_id: str | None = None,
        task_title: str | None = None,
    ) -> CapturedEvent:
        """Run an event through the expectation model and store it when surprising."""
        model = self.memory_manager.load_expectation_model()
        state = self.memory_manager.load_brain_state()
        created = [memory.created_at for memory in self.memory_manager.list_memories()]
        outcome = process_prediction_event(
            event,
            model,
            created,
            session_message_count=state.message_count if state else 0,
            base_threshold=self.settings.prediction.base_threshold,
            related_task_id=related_task_id,
            task_title=task_title,
        )
        self.memory_manager.save_expectation_model(outcome.model)
        captured = CapturedEvent(outcome=outcome)
        if outcome.memory is not None:
            stored = self.store(outcome.memory.candidate, skip_gate=False)
            if stored.persisted and not stored.merged:
                self.memory_manager.update_strength(
                    stored.record.id, outcome.memory.synaptic_strength - stored.record.synaptic_strength
                )
                captured.record_id = stored.record.id
        return captured

    def _store_reflection(self, content: PredictionContent | SurpriseContent) -> str:
        draft = create_reflection(content)
        stored = self.memory_manager.store(draft.candidate, skip_gate=True, quality_score=draft.quality_score)
        for target_id in draft.linked_memory_ids:
            if target_id != stored.record.id and self.memory_manager.find_memory(target_id) is not None:
                self.memory_manager.add_link(stored.record.id, target_id, "related")
        self._notify("memories", f"reflection {stored.record.id}")
        return stored.record.id

    # ── maintenance and session lifecycle ────────────────────────

    def reflect(self) -> dict[str, Any]:
        results = self.consolidator.run("light")
        state = self.memory_manager.load_brain_state()
        if state is not None:
            self.memory_manager.save_brain_state(reset_checkpoint(state))
        return results

    def flush_cortex(self) -> list[str]:
        learned = self.cortex_loop.flush()
        return [entry.word for entry in learned.new_entries] if learned else []

    def run_maintenance(self) -> dict[str, Any]:
        """Deep consolidation: prune, reflect, learn rules, flush cortex, decay expectations."""
        self._poll_notifier()
        results = self.consolidator.run("deep")
        report = DegradationReport()
        report.run("activity", lambda: self._log("maintenance", "deep maintenance finished", results=results), None)
        self._notify("memories", "maintenance")
        results["degraded"] = [*results.get("degraded", []), *report.degraded_zones]
        return results

    def start_session(self) -> BrainState:
        state = init_brain_state(self.memory_manager.load_brain_state())
        self.memory_manager.save_brain_state(state)
        report = DegradationReport()
        report.run("activity", lambda: self._log("session.started", "session started"), None)
        return state

    def end_session(self) -> dict[str, Any]:
        results = self.run_maintenance()
        if self.notifier is not None:
            self.notifier.flush()
        report = DegradationReport()
        report.run("activity", lambda: self._log("session.ended", "session ended"), None)
        return results

    def delete(self, memory_id: str) -> None:
        self._poll_notifier()
        self.memory_manager.delete_memory(memory_id)
        report = DegradationReport()
        report.run("activity", lambda: self._log("memory.deleted", f"deleted {memory_id}", memory_id=memory_id), None)
        self._notify("memories", f"deleted {memory_id}")

    def close(self) -> None:
        """Flush queued cortex gaps and pending change notifications."""
        report = DegradationReport()
        learned = report.run("cortex", self.cortex_loop.flush, None)
        if learned is not None and learned.new_entries:
            self._notify("cortex_learned", f"learned {len(learned.new_entries)} cortex words")
        if self.notifier is not None:
            self.notifier.flush()
        if report.degraded:
            logger.warning("close finished %s", report.annotation)

    def health(self, failures: Mapping[str, int] | None = None) -> HealthReport:
        cortex = self.memory_manager.load_cortex_store()
        return generate_health_report(
            self.memory_manager.list_memories(),
            self.memory_manager.load_brain_state(),
            cortex.entries,
            self.memory_manager.load_rules(),
            len(self.memory_manager.seed_table),
            total_gaps_processed=cortex.total_gaps_processed,
            failures=failures,
            scoring=self.settings.scoring,
            decay_threshold_days=self.settings.brain_state.decay_threshold_days,
        )

    # ── helpers ──────────────────────────────────────────────────

    def _current_state(self) -> BrainState:
        state = self.memory_manager.load_brain_state()
        return state if state is not None else init_brain_state(None)

    def _log(self, event: str, summary: str, **details: Any) -> None:
        if self.activity_logger is not None:
            self.activity_logger.log(event, summary, **details)

    def _notify(self, collection: str, summary: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(collection, summary)

    def _poll_notifier(self) -> None:
        if self.notifier is not None:
            self.notifier.poll()
