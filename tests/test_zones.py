"""Degradation zone tests."""

from __future__ import annotations

import pytest

from core.zones import DegradationReport, try_zone
from memory.errors import PersistenceError


def fail() -> list[str]:
    raise RuntimeError("linker exploded")


def test_zone_returns_value_when_healthy() -> None:
    outcome = try_zone("linker", lambda: ["link"], [])

    assert outcome.value == ["link"]
    assert not outcome.degraded
    assert outcome.error is None


def test_zone_falls_back_and_records_error() -> None:
    outcome = try_zone("linker", fail, [])

    assert outcome.value == []
    assert outcome.degraded
    assert isinstance(outcome.error, RuntimeError)
    assert outcome.label == "linker"


def test_persistence_errors_propagate() -> None:
    def broken_store() -> None:
        raise PersistenceError("disk full")

    with pytest.raises(PersistenceError):
        try_zone("brain_state", broken_store, None)


def test_report_collects_unique_degraded_zones() -> None:
    report = DegradationReport()

    assert report.run("cortex", lambda: 3, 0) == 3
    assert report.run("linker", fail, []) == []
    report.run("linker", fail, [])
    report.add(try_zone("activity_log", fail, None))

    assert report.degraded
    assert report.degraded_zones == ["linker", "activity_log"]
    assert report.annotation == "degraded: [linker, activity_log]"


def test_clean_report_has_no_annotation() -> None:
    report = DegradationReport()
    report.run("cortex", lambda: None, None)

    assert not report.degraded
    assert report.annotation == ""
