"""Memory consolidation orchestrator."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from core.zones import DegradationReport
from memory.brain_state import apply_synaptic_plasticity
from memory.consolidation.forgetting import Pruner, PruneOptions
from memory.consolidation.pattern_miner import PatternMiner
from memory.consolidation.reflection import (
    ReflectionConfig,
    create_reflection,
    filter_recent_memories,
    generate_consolidation,
    is_duplicate_reflection,
)
from memory.learning.cortex_learner import prune_stale_entries
from memory.learning.prediction import decay_expectation_model
from memory.learning.rules import extract_rule_candidates, learn_rules
from memory.schemas import as_utc, utc_now
from memory.scoring import ScoringConfig
from memory.types.memory import MemoryRecord
from memory.types.reflection import ReflectionContent

logger = logging.getLogger("brain.consolidation")


class Consolidator:
    """Runs the maintenance cycle: reflection, consolidation, pruning and learning."""

    def __init__(
        self,
        memory_manager: Any,
        cortex_loop: Any | None = None,
        reflection: ReflectionConfig | None = None,
        pruning: PruneOptions | None = None,
        scoring: ScoringConfig | None = None,
        cortex_max_age_days: int = 60,
    ) -> None:
        self.memory_manager = memory_manager
        self.cortex_loop = cortex_loop
        self.reflection = reflection or ReflectionConfig()
        self.pattern_miner = PatternMiner(self.reflection)
        self.pruner = Pruner(memory_manager, pruning, scoring)
        self.cortex_max_age_days = cortex_max_age_days

    def run(self, mode: str = "light", now: datetime | None = None) -> dict[str, Any]:
        """Run a consolidation cycle.

        Light mode mines recent memories for meta observations and folds
        tag clusters into consolidated insights. Deep mode additionally prunes,
        learns rules, flushes and prunes the cortex, decays the expectation
        model and applies synaptic plasticity. Every step degrades on its own.
        """
        if mode not in {"light", "deep"}:
            raise ValueError(f"Unknown consolidation mode: {mode}")
        now = as_utc(now) or utc_now()
        report = DegradationReport()
        results: dict[str, Any] = {"mode": mode}

        results["reflection"] = report.run("reflection", lambda: self.reflect(now), {})

        if mode == "deep":
            results["pruning"] = report.run("pruning", self.pruner.run, {})
            results["links_cleaned"] = report.run("links", self.memory_manager.clean_dangling_links, 0)
            results["rules"] = report.run("rules", self.learn_rules, {})
            results["cortex"] = report.run("cortex", lambda: self.maintain_cortex(now), {})
            results["prediction"] = report.run("prediction", lambda: self.decay_expectations(now), {})
            results["plasticity"] = report.run("plasticity", self.apply_plasticity, {})

        results["degraded"] = report.degraded_zones
        logger.info("consolidation %s finished%s", mode, f" ({report.annotation})" if report.degraded else "")
        return results

    def reflect(self, now: datetime | None = None) -> dict[str, Any]:
        """Store meta observations and cluster consolidations that are not already known."""
        live = self.memory_manager.list_memories(include_superseded=False)
        recent = filter_recent_memories(live, self.reflection.recent_window_days, now)
        existing = [memory for memory in live if memory.type == "reflection"]

        contents: list[ReflectionContent] = list(self.pattern_miner.observe(recent))
        observations = len(contents)
        for cluster in self.pattern_miner.clusters(recent):
            consolidated = generate_consolidation(cluster)
            if consolidated is not None:
                contents.append(consolidated)

        stored: list[str] = []
        duplicates = 0
        for content in contents:
            if is_duplicate_reflection(content, existing):
                duplicates += 1
                continue
            record = self._store_reflection(content)
            existing.append(record)
            stored.append(record.id)
        return {
            "observations": observations,
            "consolidations": len(contents) - observations,
            "stored": stored,
            "duplicates_skipped": duplicates,
        }

    def _store_reflection(self, content: ReflectionContent) -> MemoryRecord:
        draft = create_reflection(content)
        result = self.memory_manager.store(draft.candidate, skip_gate=True, quality_score=draft.quality_score)
        record = result.record
        for target_id in draft.linked_memory_ids:
            if target_id == record.id or record.has_link(target_id, "related"):
                continue
            if self.memory_manager.find_memory(target_id) is not None:
                self.memory_manager.add_link(record.id, target_id, "related")
        logger.debug("stored reflection %s linked to %d memories", record.id, len(draft.linked_memory_ids))
        return self.memory_manager.get_memory(record.id)

    def learn_rules(self) -> dict[str, Any]:
        memories = self.memory_manager.list_memories(include_superseded=False)
        candidates = extract_rule_candidates(memories)
        learning = learn_rules(candidates, self.memory_manager.load_rules())
        if learning.new_rules or learning.reinforced:
            self.memory_manager.save_rules(learning.rules)
        return {
            "candidates": len(candidates),
            "new": len(learning.new_rules),
            "reinforced": len(learning.reinforced),
            "total": len(learning.rules),
        }

    def maintain_cortex(self, now: datetime | None = None) -> dict[str, Any]:
        """Force a cortex flush, then drop learned words not seen recently."""
        flushed = self.cortex_loop.flush() if self.cortex_loop is not None else None
        store = self.memory_manager.load_cortex_store()
        kept, pruned = prune_stale_entries(store.entries, self.cortex_max_age_days, now)
        if pruned:
            store.entries = kept
            self.memory_manager.save_cortex_store(store)
            logger.info("pruned %d stale cortex entries", len(pruned))
        return {
            "new_entries": [entry.word for entry in flushed.new_entries] if flushed else [],
            "pruned": [entry.word for entry in pruned],
            "total": len(kept),
        }

    def decay_expectations(self, now: datetime | None = None) -> dict[str, Any]:
        model = self.memory_manager.load_expectation_model()
        decayed = decay_expectation_model(model, now)
        self.memory_manager.save_expectation_model(decayed)
        return {"signatures_before": len(model.frequencies), "signatures_after": len(decayed.frequencies)}

    def apply_plasticity(self) -> dict[str, Any]:
        """Boost memories surfaced this session and copy the strengths onto the records."""
        state = self.memory_manager.load_brain_state()
        if state is None:
            return {"boosted": 0}
        state, boosted = apply_synaptic_plasticity(state)
        strengths = {memory_id: state.memory_traces[memory_id].synaptic_strength for memory_id in boosted}
        updated = self.memory_manager.set_strengths(strengths)
        state.active_traces = []
        self.memory_manager.save_brain_state(state)
        return {"boosted": len(boosted), "records_updated": updated}
