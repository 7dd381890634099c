"""Top-level application orchestrator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.activity_logger import ActivityLogger
from core.brain_service import BrainService
from core.event_bus import DebouncedNotifier, EventBus
from core.policy_runtime import ensure_runtime_dirs, load_effective_config, merge_dicts
from core.settings import BrainSettings
from memory.learning.continual_learning import CortexLearningLoop
from memory.memory_manager import MemoryManager
from memory.stores.sql_store import SQLStore

logger = logging.getLogger("brain.orchestrator")


@dataclass
class RuntimeBundle:
    """Holds initialized runtime components."""

    config: dict[str, Any]
    settings: BrainSettings
    memory: MemoryManager
    service: BrainService
    event_bus: EventBus
    notifier: DebouncedNotifier
    activity: ActivityLogger


class Orchestrator:
    """Creates and wires runtime components for CLI use."""

    def __init__(self, root: Path | None = None, overrides: dict[str, Any] | None = None) -> None:
        default_root = Path(__file__).resolve().parents[1]
        self.root = (root or default_root).resolve()
        self.overrides = overrides or {}

    def build(self) -> RuntimeBundle:
        config = merge_dicts(load_effective_config(self.root), self.overrides)
        settings = BrainSettings.from_mapping(config)
        paths = ensure_runtime_dirs(self.root, settings.model_dump())

        sql_store = SQLStore(paths["db_path"])
        sql_store.create_all()

        memory = MemoryManager(
            sql_store=sql_store,
            project_id=settings.brain.project_id,
            gate_options=settings.quality_gate,
            seed_extra=settings.cortex.extra_seed,
            cortex_threshold=settings.cortex.confidence_threshold,
        )
        event_bus = EventBus()
        notifier = DebouncedNotifier(event_bus, debounce_seconds=settings.notifier.debounce_seconds)
        activity = ActivityLogger(paths["activity_log_path"])
        cortex_loop = CortexLearningLoop(
            memory,
            flush_interval_seconds=settings.cortex.flush_interval_seconds,
            min_observations=settings.cortex.min_observations,
        )
        service = BrainService(
            memory,
            settings=settings,
            activity_logger=activity,
            notifier=notifier,
            cortex_loop=cortex_loop,
        )
        logger.debug("runtime ready at %s (project %s)", paths["db_path"], settings.brain.project_id)

        return RuntimeBundle(
            config=config,
            settings=settings,
            memory=memory,
            service=service,
            event_bus=event_bus,
            notifier=notifier,
            activity=activity,
        )
