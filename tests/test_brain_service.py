"""Brain service tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from core.activity_logger import ActivityLogger
from core.brain_service import BrainService
from core.event_bus import CHANGE_EVENT, DebouncedNotifier, EventBus
from memory.learning.continual_learning import CortexLearningLoop
from memory.learning.prediction import error_event
from memory.memory_manager import MemoryManager
from memory.stores.sql_store import SQLStore
from memory.types.reflection import PredictionContent

DOCKER_PAIN = {
    "type": "pain",
    "title": "Docker deploy failed on missing env",
    "content": "The container crashed because DATABASE_URL was unset.",
    "rule": "Check env vars before deploying containers",
    "tags": ["deployment", "configuration"],
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class BrokenActivityLogger:
    def log(self, event: str, summary: str, **details: Any) -> dict[str, Any]:
        raise OSError("log volume is read-only")


def build_memory(tmp_path: Path) -> MemoryManager:
    store = SQLStore(db_path=tmp_path / "brain.db")
    store.create_all()
    return MemoryManager(sql_store=store)


def test_store_updates_state_and_logs_activity(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    activity = ActivityLogger(tmp_path / "logs" / "activity.jsonl")
    service = BrainService(memory, activity_logger=activity)

    result = service.store(DOCKER_PAIN, skip_gate=True)

    assert result.persisted
    assert result.degraded == []
    state = memory.load_brain_state()
    assert state is not None
    assert state.significant_events_since_checkpoint == 1
    assert set(state.synaptic_activity) == {"deployment", "configuration"}
    assert activity.tail()[-1]["details"] == {"memory_id": result.record.id}


def test_store_survives_broken_activity_log(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory, activity_logger=BrokenActivityLogger())

    result = service.store(DOCKER_PAIN, skip_gate=True)

    assert result.degraded == ["activity"]
    assert result.annotation == "degraded: [activity]"
    assert memory.get_memory(result.record.id).title == DOCKER_PAIN["title"]


def test_retrieve_ticks_state_and_records_access(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory)
    stored = service.store(DOCKER_PAIN, skip_gate=True).record

    result = service.retrieve("docker deploy failing")

    assert result.memory_ids == [stored.id]
    assert result.degraded == []
    state = memory.load_brain_state()
    assert state is not None
    assert state.message_count == 1
    assert state.memory_traces[stored.id].count == 1
    assert state.active_traces == [stored.id]
    assert state.firing_frequency["deployment"] == 2
    assert memory.get_memory(stored.id).access_count == 1


def test_predict_then_record_outcome(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory)

    predicted = service.predict({"task_title": "Ship release"})

    assert predicted.prediction.predicted_outcome == "partial"
    assert predicted.prediction.confidence == pytest.approx(0.2)
    assert predicted.record_id is not None
    assert memory.get_memory(predicted.record_id).type == "reflection"

    outcome = service.record_outcome("failure")

    assert outcome.surprise is not None
    assert outcome.surprise.direction == "worse"
    assert outcome.surprise.prediction_id == predicted.record_id
    assert outcome.surprise.surprise_score == pytest.approx(0.3)
    assert outcome.degraded == []
    assert memory.load_expectation_model().total_events == 1


def test_confident_wrong_prediction_stores_surprise(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory)
    prediction = PredictionContent(
        summary="Predicting success for: migrate",
        detail="detail",
        confidence=0.9,
        predicted_outcome="success",
        basis="two wins",
    )

    outcome = service.record_outcome("failure", prediction=prediction)

    assert outcome.surprise is not None
    assert outcome.surprise.surprise_score == pytest.approx(0.95)
    assert outcome.surprise_record_id is not None
    record = memory.get_memory(outcome.surprise_record_id)
    assert record.type == "reflection"
    assert "surprise" in record.tags


def test_surprising_event_is_captured_with_encoding_strength(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory)
    event = error_event("TimeoutError", "Upstream API timed out", tags=["api", "network"], lesson="Retry with backoff")

    captured = service.process_event(event, task_title="Sync")

    assert captured.outcome.decision.capture
    assert captured.record_id is not None
    record = memory.get_memory(captured.record_id)
    assert record.type == "pain"
    assert record.synaptic_strength == pytest.approx(1.3)
    assert "auto-surprise" in record.tags
    assert memory.load_expectation_model().frequencies["error::TimeoutError"].count == 1


def test_end_session_runs_maintenance_and_flushes_notifier(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    bus = EventBus()
    received: list[dict[str, Any]] = []
    bus.subscribe(CHANGE_EVENT, received.append)
    service = BrainService(memory, notifier=DebouncedNotifier(bus, clock=FakeClock()))
    service.start_session()
    stored = service.store(DOCKER_PAIN, skip_gate=True).record
    service.retrieve("docker deploy failing")

    results = service.end_session()

    assert results["mode"] == "deep"
    assert results["degraded"] == []
    assert results["plasticity"]["boosted"] == 1
    assert memory.get_memory(stored.id).synaptic_strength == pytest.approx(1.1)
    assert len(received) == 1
    assert "memories" in received[0]["files"]


def test_health_reports_on_live_store(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    service = BrainService(memory)
    assert service.health().grade == "D"

    service.store(DOCKER_PAIN, skip_gate=True)
    report = service.health()

    assert report.memories.total == 1
    assert report.session.synaptic_activity_tags == 2
    assert "No brain state found" not in report.issues


def test_change_notification_goes_out_after_quiet_period(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    bus = EventBus()
    received: list[dict[str, Any]] = []
    bus.subscribe(CHANGE_EVENT, received.append)
    clock = FakeClock()
    service = BrainService(memory, notifier=DebouncedNotifier(bus, debounce_seconds=2.0, clock=clock))

    stored = service.store(DOCKER_PAIN, skip_gate=True).record
    service.retrieve("docker deploy failing")
    assert received == []

    clock.now = 60.0
    service.retrieve("docker deploy failing")

    assert len(received) == 1
    assert received[0]["files"] == ["memories"]
    assert stored.id in received[0]["summary"]

    service.store({"type": "win", "title": "Env check script caught missing DATABASE_URL"}, skip_gate=True)
    clock.now = 120.0
    service.retrieve("docker deploy failing")

    assert len(received) == 2


def test_stale_gap_queue_flushes_on_next_access(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    clock = FakeClock()
    loop = CortexLearningLoop(memory, flush_interval_seconds=300, clock=clock)
    service = BrainService(memory, cortex_loop=loop)
    service.store(
        {"type": "pain", "title": "Alembic autogenerate missed index", "tags": ["database", "migration"]},
        skip_gate=True,
    )

    first = service.retrieve("alembic failed")
    assert first.gaps == ["alembic"]
    assert loop.pending == 1

    clock.now = 600.0
    second = service.retrieve("tune the css grid")

    assert second.gaps == []
    assert second.degraded == []
    assert loop.pending == 0
    assert memory.load_cortex_store().total_gaps_processed == 1


def test_close_flushes_gaps_and_notifications(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    bus = EventBus()
    received: list[dict[str, Any]] = []
    bus.subscribe(CHANGE_EVENT, received.append)
    service = BrainService(memory, notifier=DebouncedNotifier(bus, clock=FakeClock()))
    stored = service.store(
        {"type": "pain", "title": "Alembic autogenerate missed index", "tags": ["database", "migration"]},
        skip_gate=True,
    ).record
    service.retrieve("alembic failed")

    service.close()

    assert service.cortex_loop.pending == 0
    assert memory.load_cortex_store().total_gaps_processed == 1
    assert len(received) == 1

    service.delete(stored.id)
    service.close()

    assert memory.count_memories() == 0
    assert received[-1]["summary"] == f"deleted {stored.id}"


def test_degraded_store_warns_on_service_logger(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    service = BrainService(build_memory(tmp_path), activity_logger=BrokenActivityLogger())

    with caplog.at_level("WARNING", logger="brain"):
        service.store(DOCKER_PAIN, skip_gate=True)

    names = {record.name for record in caplog.records}
    assert {"brain.zones", "brain.service"} <= names
