"""Degrade-independently zones for side-effecting subsystems."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from memory.errors import PersistenceError

T = TypeVar("T")

logger = logging.getLogger("brain.zones")


@dataclass
class ZoneOutcome(Generic[T]):
    """Result of one zone: either its value or the fallback plus the error."""

    value: T
    degraded: bool = False
    error: BaseException | None = None
    label: str = ""


def try_zone(label: str, fn: Callable[[], T], fallback: T) -> ZoneOutcome[T]:
    """Run ``fn``; on failure log with the zone label and return ``fallback``.

    PersistenceError is a primary-path failure and always propagates.
    """
    try:
        return ZoneOutcome(value=fn(), label=label)
    except PersistenceError:
        raise
    except Exception as exc:
        try:
            logger.warning("zone %s degraded: %s", label, exc, exc_info=True)
        except Exception:
            pass
        return ZoneOutcome(value=fallback, degraded=True, error=exc, label=label)


@dataclass
class DegradationReport:
    """Accumulates zone outcomes across one operation."""

    outcomes: list[ZoneOutcome] = field(default_factory=list)

    def run(self, label: str, fn: Callable[[], T], fallback: T) -> T:
        outcome = try_zone(label, fn, fallback)
        self.outcomes.append(outcome)
        return outcome.value

    def add(self, outcome: ZoneOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def degraded_zones(self) -> list[str]:
        labels = [outcome.label for outcome in self.outcomes if outcome.degraded]
        return list(dict.fromkeys(labels))

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_zones)

    @property
    def annotation(self) -> str:
        if not self.degraded:
            return ""
        return f"degraded: [{', '.join(self.degraded_zones)}]"
